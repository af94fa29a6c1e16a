"""E-signature document lifecycle and compliance security layer."""

__version__ = "1.0.0"
