"""Database models and utilities."""

from .models import ProductTicketTable, TicketCommentTable, TicketStatusHistoryTable

__all__ = [
    "ProductTicketTable",
    "TicketCommentTable",
    "TicketStatusHistoryTable",
]
