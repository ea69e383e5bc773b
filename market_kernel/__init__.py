"""
Market Kernel - shared infrastructure for the marketplace money core.

Provides the pieces every component builds on:
- Structured JSON logging with request-scoped context
- Typed exception hierarchy with machine-readable codes
- SQLAlchemy declarative base, engine and session scope
- Injectable clock
- Currency registry and integer minor-unit rounding
- Locked, gap-free sequence counters
"""

__version__ = "0.1.0"
