"""Offline cache and sync engine for the taskbuddy habit tracker."""

from .offline import OfflineTaskClient, create_client

__all__ = ["OfflineTaskClient", "create_client"]
