from politest.cli.main import app

app(prog_name="politest")
