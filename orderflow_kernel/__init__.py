"""
Orderflow Kernel

Shared foundation for the order fulfillment & document-flow engine:
- Declarative SQLAlchemy base with UUID keys and Decimal precision
- Engine / session lifecycle with commit-or-rollback scopes
- Structured JSON logging
- Typed reconciliation errors and result objects
- Injectable clock
"""

__version__ = "0.1.0"
