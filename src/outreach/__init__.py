"""Member outreach call agent."""

__version__ = "0.1.0"
