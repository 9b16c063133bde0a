"""
Costing Kernel - hospital Activity-Based Costing core

Persistence, domain primitives and infrastructure for the ABC allocation
pipeline:
- Tenant (hospital) and operating-period scoped cost entities
- Exact Decimal arithmetic for every money and ratio value
- Engine-owned computed fields guarded against ordinary writes
- Structured JSON logging and a typed exception hierarchy
"""

__version__ = "0.1.0"
