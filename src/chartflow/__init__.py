"""chartflow - interruptible, retrying chart installation workflows."""

__version__ = "0.1.0"
