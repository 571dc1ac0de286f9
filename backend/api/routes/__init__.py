"""API routes for the Delivery Dispatch Engine."""

from . import dispatch, orders

__all__ = ["dispatch", "orders"]
