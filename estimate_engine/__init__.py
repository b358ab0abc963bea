"""
Estimate Engine - Versioned, tenant-scoped construction estimates.

Line items carry materialized cost/price/margin totals, estimates carry
their sums, and cost data is only shown to actors allowed to see it.
"""

__version__ = "1.0.0"
