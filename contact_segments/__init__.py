"""Dynamic contact segments: criteria validation, compilation and evaluation."""

__version__ = "1.0.0"
