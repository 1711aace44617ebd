"""FastAPI request layer for the consent core."""
