"""Telephony provider boundary and inbound event handling."""
