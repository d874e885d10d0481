"""Git-backed multi-site content repository."""

__version__ = "0.1.0"
