"""
Approval Kernel

A generic approval workflow engine with:
- At most one pending request per governed entity, enforced in storage
- A pure, table-driven transition validator
- An append-only, hash-chained action log
- Read-side projections for pending work and audit history
"""

__version__ = "0.1.0"
