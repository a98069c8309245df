"""HTTP surface around the resolution engine."""
