"""ResetNow Companion - backend for the Rae companion chat."""

__version__ = "1.0.0"
