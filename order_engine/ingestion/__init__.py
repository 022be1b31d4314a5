"""
Webhook Ingestion Module

Payload models live here; the dispatcher, event store and processors are
imported from their modules directly.
"""
from .payloads import StorefrontLineItem, StorefrontOrder, parse_order

__all__ = [
    "StorefrontLineItem",
    "StorefrontOrder",
    "parse_order",
]
