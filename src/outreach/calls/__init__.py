"""Call session domain module."""
