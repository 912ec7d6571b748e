"""Frontend (command line) of SealKeep."""
