"""Background jobs for the band video hub: YouTube sync, video processing and catalog maintenance."""

__version__ = "0.1.0"
