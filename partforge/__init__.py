# partforge/__init__.py
"""
PartForge - versioned entity transaction engine for electronic parts.

Parts evolve through immutable, numbered versions. Writes run as single
PostgreSQL transactions with row locks, an append-only revision ledger
and an acyclic assembly structure graph.
"""

__version__ = "0.1.0"
