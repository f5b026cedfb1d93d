"""politest CLI - Main entry point."""

import typer
from typing_extensions import Annotated

from politest import __version__

app = typer.Typer(
    name="politest",
    help="politest - IAM policy tests driven by YAML scenarios and the AWS policy simulator",
    add_completion=True,
    no_args_is_help=True,
)


def version_callback(value: bool) -> None:
    """Show version and exit."""
    if value:
        from politest.cli.output import console
        console.print(f"[bold]politest[/bold] v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            callback=version_callback,
            is_eager=True,
            help="Show version and exit",
        ),
    ] = False,
) -> None:
    """Test IAM policies against expected decisions before they ship."""
    pass


# Import commands after app is defined to avoid circular imports
from politest.cli.commands.render import render_scenario
from politest.cli.commands.run import run_scenario

app.command(name="run", help="Run the tests of a scenario against the policy simulator")(run_scenario)
app.command(name="render", help="Show composed policies and statement sources without simulating")(render_scenario)


if __name__ == "__main__":
    app()
