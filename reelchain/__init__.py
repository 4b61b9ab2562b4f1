"""Turn a narrative script into a chain of generated video clips."""

__version__ = "0.1.0"
