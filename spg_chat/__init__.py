"""S P Granites support chat."""

__version__ = "0.1.0"
