"""themesync: keep a deployed theme directory in sync with a GitHub branch."""

__version__ = "0.3.0"
