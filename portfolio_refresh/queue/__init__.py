"""Durable refresh queue over a Redis stream consumer group."""

from .refresh_queue import RefreshQueue, REFRESH_STREAM, REFRESH_GROUP

__all__ = ["RefreshQueue", "REFRESH_STREAM", "REFRESH_GROUP"]
