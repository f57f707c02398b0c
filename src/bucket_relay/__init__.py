"""Bucket Relay - polls object storage and relays new objects to Telegram."""

__version__ = "0.1.0"
