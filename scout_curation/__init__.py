"""Photo similarity grouping and curation suggestions."""

__version__ = "0.1.0"
