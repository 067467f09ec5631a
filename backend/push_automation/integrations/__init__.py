"""Clients for external systems (Shopify, Expo)."""
