"""SealKeep: client-side envelope encryption with gated key custody."""

__version__ = "0.1.0"
