"""
Pydantic models for API requests and responses.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from store_rag.ingestion.records import DataType
from store_rag.vector.hybrid_search import LockMode, SearchStatus


def _now() -> datetime:
    return datetime.now(timezone.utc)


# Request Models

class CleanupRequest(BaseModel):
    """Request body for a cleanup-and-reindex job."""
    data_types: Optional[List[DataType]] = Field(None, description="Data types to rebuild (all when omitted)")


class SearchRequest(BaseModel):
    """Request model for search endpoint."""
    query: str = Field(..., min_length=1, max_length=1000, description="Search query")
    store_id: str = Field(..., min_length=1, description="Store whose knowledge is searched")
    agent_type: Optional[str] = Field(None, description="Calling agent, used for namespace restriction")
    top_k: int = Field(10, ge=1, le=50, description="Number of results to return")
    score_threshold: Optional[float] = Field(None, ge=0.0, le=1.0, description="Minimum final score")
    data_types: Optional[List[DataType]] = Field(None, description="Data types to search (all when omitted)")
    lock_mode: LockMode = Field(LockMode.WAIT, description="Behaviour while the store is locked")
    restrict_to_agent_namespaces: bool = Field(False, description="Limit data types to the agent's namespaces")

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "query": "¿qué productos tengo en stock?",
            "store_id": "12345",
            "agent_type": "product_manager",
            "top_k": 5,
            "score_threshold": 0.2,
        }
    })

    @field_validator("query")
    @classmethod
    def validate_query(cls, v):
        if not v.strip():
            raise ValueError("query must not be blank")
        return v.strip()


# Response Models

class JobSubmittedResponse(BaseModel):
    job_id: str
    store_id: str
    job_type: str
    state: str


class StateTransitionModel(BaseModel):
    state: str
    at: datetime
    error: Optional[str] = None


class JobStatusResponse(BaseModel):
    """State and history of a background job."""
    job_id: str
    job_type: str
    store_id: str
    priority: str
    state: str
    retry_count: int
    max_retries: int
    data_types: Optional[List[str]] = None
    incremental: bool = False
    created_at: datetime
    history: List[StateTransitionModel] = Field(default_factory=list)
    result: Optional[Dict[str, Any]] = None


class SearchResultItem(BaseModel):
    document_id: str
    store_id: str
    data_type: DataType
    source_id: Optional[str] = None
    semantic_score: float
    keyword_score: float
    final_score: float
    excerpt: str
    updated_at: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class SearchResponseModel(BaseModel):
    """Response model for search endpoint."""
    status: SearchStatus
    results: List[SearchResultItem] = Field(default_factory=list)
    total_results: int = 0
    metadata: Dict[str, Any] = Field(default_factory=dict)


class LockStatusResponse(BaseModel):
    total_locks: int
    active_locks: List[Dict[str, Any]] = Field(default_factory=list)
    ttl_seconds: float


class SyncStatusResponse(BaseModel):
    store_id: str
    sync_status: str
    status_message: str
    can_trigger_sync: bool
    has_data: bool
    last_sync_at: Optional[datetime] = None
    created_at: datetime
    minutes_since_creation: int
    minutes_since_last_sync: Optional[int] = None
    estimated_minutes_remaining: Optional[int] = None
    vector_counts: Dict[str, int] = Field(default_factory=dict)
    last_error: Optional[str] = None
    recommendations: List[str] = Field(default_factory=list)


class SystemHealthResponse(BaseModel):
    """System health check response."""
    status: str = Field(..., description="Overall system status")
    timestamp: datetime = Field(default_factory=_now, description="Health check timestamp")
    uptime: float = Field(0.0, description="System uptime in seconds")
    components: Dict[str, Dict[str, Any]] = Field(default_factory=dict, description="Component health status")
    jobs: Dict[str, Any] = Field(default_factory=dict)
    locks: Dict[str, Any] = Field(default_factory=dict)


# Error Models

class ErrorDetail(BaseModel):
    """Detailed error information."""
    code: str = Field(..., description="Error code")
    message: str = Field(..., description="Human-readable error message")
    details: Optional[Dict[str, Any]] = Field(None, description="Additional error details")


class ErrorResponse(BaseModel):
    """Standard error response."""
    error: ErrorDetail = Field(..., description="Error information")
    timestamp: datetime = Field(default_factory=_now, description="Error timestamp")

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "error": {
                "code": "STORE_LOCKED",
                "message": "Store 12345 is locked for deletion",
                "details": {"store_id": "12345", "reason": "store_disconnected"}
            },
            "timestamp": "2025-01-26T12:00:00Z"
        }
    })
