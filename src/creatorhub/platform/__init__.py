"""CreatorHub subscription platform."""
