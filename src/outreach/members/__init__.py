"""Member domain module."""
