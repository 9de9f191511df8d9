"""Command-line tools for the score reconciler."""
