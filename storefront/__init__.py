"""Storefront backend: catalog variants, checkout, and webhook-driven orders."""
