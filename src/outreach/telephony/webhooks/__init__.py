"""Inbound provider event webhook."""
