"""Non-live text generation."""
