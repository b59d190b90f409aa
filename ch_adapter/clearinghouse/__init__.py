"""Clearinghouse API client module."""

from .client import ClearinghouseClient, ClearinghouseAPIError
from .models import RemoteRecord

__all__ = ["ClearinghouseClient", "ClearinghouseAPIError", "RemoteRecord"]
