"""masterforge - Build typed master data tables, binary snapshots and a relational mirror from proto schemas."""

from importlib.metadata import version, PackageNotFoundError

try:
    __version__ = version("masterforge")
except PackageNotFoundError:
    __version__ = "unknown"

__all__ = ["__version__"]
