"""HTTP file storage with content-addressed, deduplicated chunks."""

__version__ = "0.1.0"
__all__ = ["__version__"]