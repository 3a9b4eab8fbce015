"""Command-line tools for turning German bank documents into transaction records."""

__version__ = "0.3.0"
