"""Curation: recommendations, photo actions, preferences and the suggestion store."""
