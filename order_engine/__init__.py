"""
Storefront Order Engine

Idempotent processing of storefront order webhooks: fulfillment routing,
owned-stock ledger, purchase alerts and revenue posting.
"""

__version__ = "1.0.0"
