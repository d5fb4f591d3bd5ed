"""scribeguard: privacy gate for clinical dictation."""

__version__ = "0.1.0"
