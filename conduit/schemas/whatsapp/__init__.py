"""WhatsApp Cloud API webhook schemas."""
