"""Image loading helpers."""
