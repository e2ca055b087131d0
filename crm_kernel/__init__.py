"""
CRM Kernel

Infrastructure shared by the quote-to-cash lifecycle modules:
- SQLAlchemy base, engine and immutability listeners
- Money types and rounding
- Injectable clock and declarative workflows
- Document numbering and share-token issuance
- Typed exceptions and structured logging
"""

__version__ = "0.1.0"
