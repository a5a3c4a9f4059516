"""Session metrics."""
