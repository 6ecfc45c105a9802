"""kubedump: persist a filtered, linked snapshot of live cluster resources."""

__version__ = "0.1.0"
