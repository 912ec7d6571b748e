"""Core package of SealKeep."""
