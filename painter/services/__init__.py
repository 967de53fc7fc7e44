"""Generation, storage and batch services used by the painter function."""
