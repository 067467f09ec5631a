"""Event-to-job automation core for Shopify mobile storefronts."""

__version__ = "0.4.0"
