"""ClassSync session and notification synchronisation core."""

__version__ = "0.3.0"
