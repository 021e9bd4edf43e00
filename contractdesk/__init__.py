"""
Contract Desk.

This package implements the contract-item usage and limit-tracking core of a
multi-tenant ticket management service: contract text parsing, the catalog of
selectable contract items, per-period limit evaluation, the ticket creation
gate and the usage dashboard rollup.
"""

__version__ = "1.0.0"
__author__ = "Contract Desk Team"
