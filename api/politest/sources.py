"""Reading scenario, variables and policy files from disk."""

from __future__ import annotations

from pathlib import Path

from politest.errors import ConfigurationError, SourceNotFoundError


def read_source_text(path: Path | str, kind: str = "file") -> str:
    """Read a UTF-8 text file.

    Raises:
        SourceNotFoundError: The file doesn't exist.
        ConfigurationError: The file is not valid UTF-8.
    """
    path = Path(path)
    if not path.is_file():
        raise SourceNotFoundError(path, kind)
    try:
        return path.read_text(encoding="utf-8")
    except UnicodeDecodeError as e:
        raise ConfigurationError(f"{kind} is not valid UTF-8: {e}", path=path) from e
