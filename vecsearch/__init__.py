"""vecsearch: a vector similarity search engine with metadata filtering."""

__version__ = "0.1.0"
