"""
Vehicle rental booking core.

Checkout and extension orchestration against Stripe, webhook reconciliation,
identity verification matching, POS terminal payments, and Redis-backed
caching and rate limiting.
"""

__version__ = "1.0.0"
