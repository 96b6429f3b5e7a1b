"""Version information for certvault."""

__version__ = "0.3.0"
