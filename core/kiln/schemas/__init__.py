"""Schemas for kiln records."""

from kiln.schemas.firing import CleanupRecord, FiringSummary, NodeRecord, NodeStatus

__all__ = ["CleanupRecord", "FiringSummary", "NodeRecord", "NodeStatus"]
