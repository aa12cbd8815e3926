"""Evolution bridge (unofficial WhatsApp) webhook schemas."""
