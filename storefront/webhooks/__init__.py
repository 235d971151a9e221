"""Inbound payment-provider webhooks.

Each delivery is signature-verified, then reconciled against the order
store. Reconciliation is idempotent on the provider's order id.
"""
