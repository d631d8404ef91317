"""Persistence backends."""
from .base import CustodyBackend
from .http import HttpCustodyBackend
from .memory import InMemoryCustodyBackend

__all__ = ["CustodyBackend", "HttpCustodyBackend", "InMemoryCustodyBackend"]
