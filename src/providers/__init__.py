"""Vendor API clients, key resolution and model catalogues."""
