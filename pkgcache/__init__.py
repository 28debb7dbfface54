"""pkgcache — integrity-checked source acquisition and build cache."""

__version__ = "0.1.0"
