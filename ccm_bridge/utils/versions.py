"""Cassandra and DSE version tags."""

from packaging import version

# Versions that can't be parsed (e.g. `trunk`) are treated as the newest one
LATEST = version.Version("999")


def parse_server_version(version_str: str) -> version.Version:
    """Parse server version, falling back to `LATEST` for branch names."""
    try:
        return version.parse(version_str.strip())
    except version.InvalidVersion:
        return LATEST


def is_at_least(version_str: str, minimum: str) -> bool:
    """Check that the version is equal to or newer than `minimum`."""
    return parse_server_version(version_str) >= version.parse(minimum)


def name_component(version_str: str) -> str:
    """Return version in a form usable inside cluster name.

    >>> name_component("2.1.9")
    '2-1-9'
    """
    return version_str.strip().replace(".", "-")
