"""Process simulation job service package."""

from importlib import metadata

__all__ = ["__version__"]


try:
    __version__ = metadata.version("procsim")
except metadata.PackageNotFoundError:  # pragma: no cover - fallback for local runs
    __version__ = "0.1.0"
