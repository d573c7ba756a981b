"""Challenge classification and puzzle solving helpers."""
