"""Command-line tools for managing a vecsearch store."""
