"""Live pod roster, watch and log streaming for Trello card agents."""

from ._version import __version__

__all__ = ["__version__"]
