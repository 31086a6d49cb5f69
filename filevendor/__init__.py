"""
filevendor: manifest-driven file resolution with a checksum-validated local cache.
"""

__version__ = "0.3.0"
