"""Creator subscription billing."""
