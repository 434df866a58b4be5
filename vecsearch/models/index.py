"""Index-side data models: metric and structure enums, statistics, recall
reports and rebuild job state.

These are the values the :class:`~vecsearch.services.index_manager.IndexManager`
reports outward (to the API, the CLI and logs).  The snapshots themselves
hold live numpy structures and live in ``vecsearch.services.index_snapshot``.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class DistanceMetric(str, Enum):
    """Distance function an index is built for.  Smaller is always closer."""

    L2 = "l2"
    COSINE = "cosine"
    INNER_PRODUCT = "inner_product"


class IndexKind(str, Enum):
    """ANN structure variant.

    ``AUTO`` resolves at build time: exact ``FLAT`` below the flat threshold,
    ``HNSW`` above it.
    """

    AUTO = "auto"
    FLAT = "flat"
    IVFFLAT = "ivfflat"
    HNSW = "hnsw"


class RebuildStatus(str, Enum):
    """Lifecycle of a background rebuild job."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def finished(self) -> bool:
        return self in (RebuildStatus.COMPLETED, RebuildStatus.FAILED, RebuildStatus.CANCELLED)


class IndexStats(BaseModel):
    """Point-in-time description of the published index snapshot."""

    model_config = ConfigDict(frozen=True)

    kind: IndexKind
    metric: DistanceMetric
    dimension: int = Field(ge=1)
    version: int = Field(ge=0)
    live_count: int = Field(ge=0, description="Documents visible to queries.")
    structure_count: int = Field(ge=0, description="Entries held by the ANN structure.")
    delta_count: int = Field(ge=0, description="Entries waiting in the delta buffer.")
    tombstone_count: int = Field(ge=0, description="Structure entries masked as deleted.")
    built_at: datetime | None = None
    built_from: int = Field(default=0, ge=0, description="Rows the structure was built from.")
    structure_params: dict[str, object] = Field(default_factory=dict)
    list_imbalance: float | None = Field(
        default=None, description="Largest IVF list size over the mean list size."
    )
    rebuild_reasons: list[str] = Field(default_factory=list)


class RecallReport(BaseModel):
    """Sampled recall@k of the ANN snapshot against exact search.

    ``degraded`` is the RecallDegraded signal: it is reported and logged,
    never raised.
    """

    model_config = ConfigDict(frozen=True)

    recall: float = Field(ge=0.0, le=1.0)
    k: int = Field(ge=1)
    sample_size: int = Field(ge=0)
    floor: float = Field(ge=0.0, le=1.0)
    degraded: bool = False
    kind: IndexKind
    snapshot_version: int = Field(ge=0)


class RebuildJobInfo(BaseModel):
    """Externally visible state of a rebuild job."""

    model_config = ConfigDict(frozen=True)

    job_id: str
    status: RebuildStatus
    progress: float = Field(default=0.0, ge=0.0, le=100.0)
    message: str = ""
    started_at: datetime
    finished_at: datetime | None = None
    error: str | None = None
    snapshot_version: int | None = None
