"""Meta Graph (Instagram/Messenger) webhook schemas."""
