"""Read-side queries over kernel models."""
