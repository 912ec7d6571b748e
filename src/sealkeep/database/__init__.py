"""SQLite persistence helpers of SealKeep."""
