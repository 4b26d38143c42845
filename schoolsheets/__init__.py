"""School Profile / Performance sheets served as a cached JSON API."""

__version__ = "1.0.0"
