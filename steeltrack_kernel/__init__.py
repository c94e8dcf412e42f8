"""
Steel Tracking Kernel

Piece-mark lifecycle and field reconciliation:
- Explicit status/location state machine with a single enforcement point
- Pure role-based transition authorizer
- All-or-nothing delivery reconciliation with discrepancy reporting
- Append-only, hash-chained activity log
- Optimistic concurrency on every mutable aggregate
"""

__version__ = "0.1.0"
