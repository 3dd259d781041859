"""
Firing Schema - a record of what happened inside one kiln.

Built from a Kiln by Kiln.summary(). Meant for logging and for drivers that
want to report which nodes ran, which failed and how cleanup went.
"""

from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field, computed_field


class NodeStatus(StrEnum):
    """Final state of a node entry at summary time."""

    RESOLVING = "resolving"
    RESOLVED = "resolved"
    FAILED = "failed"


class NodeRecord(BaseModel):
    """One memoized node entry."""

    node_id: str
    args: list[Any] = Field(default_factory=list)
    status: NodeStatus
    error: str | None = None
    latency_ms: int = 0

    model_config = {"extra": "allow"}


class CleanupRecord(BaseModel):
    """One cleanup action that ran during finalize."""

    node_id: str
    variant: str = Field(description="cleanup, cleanup_success or cleanup_failure")
    success: bool = True
    error: str | None = None

    model_config = {"extra": "allow"}


class FiringSummary(BaseModel):
    """Everything a kiln did, in resolution order."""

    context_id: str
    outcome: str | None = None
    started_at: datetime = Field(default_factory=datetime.now)
    finalized_at: datetime | None = None

    nodes: list[NodeRecord] = Field(default_factory=list)
    cleanups: list[CleanupRecord] = Field(default_factory=list)

    @computed_field
    @property
    def failed_nodes(self) -> list[str]:
        return [n.node_id for n in self.nodes if n.status == NodeStatus.FAILED]

    @computed_field
    @property
    def cleanup_failures(self) -> list[str]:
        return [c.node_id for c in self.cleanups if not c.success]

    model_config = {"extra": "allow"}
