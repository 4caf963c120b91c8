"""Domain and storage adapters for the compliance core."""
