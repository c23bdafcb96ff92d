"""Infrastructure adapters for partmatch."""
