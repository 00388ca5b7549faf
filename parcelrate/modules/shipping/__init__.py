"""Shipping domain: carrier adapters and registry."""
