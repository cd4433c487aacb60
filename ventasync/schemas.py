from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


# --- Health payload ---
class HealthResponse(BaseModel):
    status: Literal["ok", "degraded"] = "ok"
    as_of: str
    service: str = "ventasync"
    polling: list[str] = Field(default_factory=list)
    cache_size: int = 0


# --- Version payload ---
class VersionResponse(BaseModel):
    service: str  # "ventasync:0.1.0"
    service_version: str
    api_url: str


# --- Error taxonomy ---
class ErrorCode(str, Enum):
    UPSTREAM_ERROR = "UPSTREAM_ERROR"
    UPSTREAM_TIMEOUT = "UPSTREAM_TIMEOUT"
    MALFORMED_PAYLOAD = "MALFORMED_PAYLOAD"
    MUTATION_REJECTED = "MUTATION_REJECTED"
    UNKNOWN_RESOURCE = "UNKNOWN_RESOURCE"
    POLLING_DISABLED = "POLLING_DISABLED"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class ErrorDetail(BaseModel):
    code: ErrorCode
    message: str
    hint: str | None = None


class ErrorResponse(BaseModel):
    error: ErrorDetail


# --- Backend mutation envelope: {success, message, <collection>} ---
class MutationResult(BaseModel):
    model_config = ConfigDict(extra="allow")
    success: bool
    message: str = ""


# --- Cache control ---
class CacheStats(BaseModel):
    size: int
    max_size: int
    ttl_s: float
    hits: int
    misses: int
    expirations: int
    evictions: int
    hit_ratio: float


class InvalidateRequest(BaseModel):
    key: str = Field(..., min_length=1, description='Cache key or path, e.g. "/ventas"')
    prefix_match: bool = Field(False, description="Expire every key under this path")


class InvalidateResponse(BaseModel):
    key: str
    prefix_match: bool
    invalidated: int


class ChangeMessage(BaseModel):
    resource: str
    as_of: str
    payload: Any
