"""Personal task tracking server and command line client."""

VERSION = (1, 2, 0)


def get_version() -> str:
    """Return the dotted version, omitting a zero patch release."""
    major, minor, patch = VERSION
    if patch:
        return f"{major}.{minor}.{patch}"
    return f"{major}.{minor}"


__version__ = get_version()

__all__ = ["VERSION", "__version__", "get_version"]
