"""Queue engine and upstream clients."""
