"""Local storage for saved wizard progress."""
