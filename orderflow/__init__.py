"""
orderflow - order lifecycle engine.

Client / writer / admin workflow over document-production orders: one
authoritative status per order, table-driven transitions, QC submissions and
revisions, and post-commit audit, notifications and real-time push.
"""

__version__ = "1.0.0"
