"""Storage, queue and broadcast backends."""
