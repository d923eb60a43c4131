"""Merchant order pricing, fulfillment and invoicing service."""

__version__ = "1.0.0"
