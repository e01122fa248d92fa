"""
LQS - Lead, Quote, Sale household reconciliation engine

Resolves lead lists and carrier quote and sale uploads to canonical households,
attributes them to producers, and routes ambiguous sales to review.
"""

__version__ = "0.1.0"
