"""Authentication and caller identity."""
