"""Document loaders producing plain text for the extraction engine."""
