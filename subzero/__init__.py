"""SubZero - Gmail subscription detection, tracking and spend projection."""

__version__ = "0.1.0"
