"""
Services package for the scoring ledger.

Read-only projections over the point ledger.
"""

from .metrics import EventMetricsService

__all__ = ['EventMetricsService']
