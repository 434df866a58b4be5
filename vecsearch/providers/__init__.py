"""Concrete adapters for the interfaces in ``vecsearch.interfaces``."""
