"""Car-wash point-of-sale storage layer."""

__version__ = "0.1.0"
