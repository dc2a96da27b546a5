import argparse
import pathlib as pl
import typing as tp


def trim(value: str) -> str:
    """Remove the leading and trailing whitespace."""
    return value.strip()


def to_lower(value: str) -> str:
    return value.lower()


def explode(value: str, *, delimiter: str = " ") -> list[str]:
    """Split string into trimmed elements, skipping the empty ones.

    >>> explode(" node1:  UP ", delimiter=":")
    ['node1', 'UP']
    """
    return [t for e in value.split(delimiter) if (t := e.strip())]


def implode(elements: tp.Iterable[tp.Any], *, delimiter: str = " ") -> str:
    """Concatenate elements into a string.

    >>> implode(["127.0.0.1", "127.0.0.2"], delimiter=",")
    '127.0.0.1,127.0.0.2'
    """
    return delimiter.join(str(e) for e in elements)


def get_ip_prefix(host: str) -> str:
    """Return IPv4 address prefix of the host, i.e. everything up to and including the last dot.

    >>> get_ip_prefix("192.168.33.11")
    '192.168.33.'
    """
    return host[: host.rfind(".") + 1]


def str_to_bool(value: str) -> bool:
    """Convert configuration value to boolean."""
    lowered = to_lower(trim(value))
    if lowered in ("1", "true", "yes", "on"):
        return True
    if lowered in ("", "0", "false", "no", "off"):
        return False
    msg = f"Invalid boolean value: '{value}'"
    raise ValueError(msg)


def check_file_arg(file_path: str) -> pl.Path | None:
    """Check that the file passed as argparse parameter is a valid existing file."""
    if not file_path:
        return None
    abs_path = pl.Path(file_path).expanduser().resolve()
    if not (abs_path.exists() and abs_path.is_file()):
        msg = f"check_file_arg: file '{file_path}' doesn't exist"
        raise argparse.ArgumentTypeError(msg)
    return abs_path
