"""Clients for remote collaborators and the HTTP surface."""
