"""HTTP-facing helpers for the social core; routing lives with the caller."""
