"""
Price scheduler request / response schemas
"""
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

SchedulerMode = Literal[
    "max_throughput",
    "high_priority",
    "medium_priority",
    "low_priority",
    "full_sync",
    "auto",
]


class SchedulerRunRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    mode: SchedulerMode = "auto"
    batch_size: int = Field(50, alias="batchSize", ge=1, le=1000)
    delay_ms: int = Field(150, alias="delayMs", ge=0, le=10000)


class SourceCounters(BaseModel):
    updated: int = 0
    failed: int = 0
    skipped: int = 0
    rejected: int = 0


class SchedulerRunResponse(BaseModel):
    success: bool = True
    status: Literal["completed", "skipped"] = "completed"
    reason: Optional[str] = None
    mode: str
    duration_ms: int = 0
    selected: int = 0
    updated: int = 0
    rejected: int = 0
    skipped: int = 0
    failed: int = 0
    deferred: int = 0
    sources: Dict[str, SourceCounters] = Field(default_factory=dict)
    errors: List[str] = Field(default_factory=list)
    adapter_stats: List[Dict[str, Any]] = Field(default_factory=list)
