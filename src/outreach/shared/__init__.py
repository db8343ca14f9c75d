"""Shared infrastructure: database, logging, errors."""
