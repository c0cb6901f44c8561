"""root package for project modules."""
