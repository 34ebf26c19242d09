"""PAX terminal bridge"""

__version__ = "1.0.0"
