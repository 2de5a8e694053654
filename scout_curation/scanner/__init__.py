"""Photo I/O, hashing, metadata filtering and photo selection."""
