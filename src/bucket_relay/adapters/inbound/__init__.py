"""Inbound adapters for Bucket Relay.

Provides the read-only REST API for health, status and metrics.
"""

from bucket_relay.adapters.inbound.rest_api import create_app

__all__ = ["create_app"]
