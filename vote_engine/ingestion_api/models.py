"""Pydantic models for request/response validation."""
from datetime import datetime, timezone
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class VoteRequest(BaseModel):
    """Vote submission request model."""

    voter_id: str = Field(..., description="Authenticated voter identifier (trusted)")
    candidate_id: str = Field(..., description="Candidate identifier")

    @field_validator("voter_id", "candidate_id")
    @classmethod
    def validate_not_blank(cls, v):
        """Reject blank identifiers."""
        if not v or not v.strip():
            raise ValueError("Identifier cannot be empty")
        return v.strip()

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "voter_id": "voter-000123",
            "candidate_id": "C1"
        }
    })


class CommitSnapshotModel(BaseModel):
    """Candidate count at commit time."""

    candidate_id: str
    vote_count: int


class VoteResponse(BaseModel):
    """Vote submission response model."""

    outcome: str = Field(..., description="success, already_voted, candidate_not_found, candidate_deleted or service_unavailable")
    voter_id: str
    candidate_id: str
    idempotent: bool = Field(default=False, description="True when the vote had already been recorded")
    snapshot: Optional[CommitSnapshotModel] = Field(default=None, description="Count at the moment of commit")


class TallyEntryModel(BaseModel):
    """One row of the tally."""

    candidate_id: str
    name: str
    vote_count: int
    percentage: float


class TallyResponse(BaseModel):
    """Tally response model."""

    candidates: List[TallyEntryModel]
    total_votes: int
    generated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class HealthResponse(BaseModel):
    """Health check response model."""

    status: Literal["healthy", "unhealthy"] = Field(..., description="Overall health status")
    services: dict = Field(..., description="Status of individual stores")
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class ErrorResponse(BaseModel):
    """Error response model."""

    error: str = Field(..., description="Error type")
    message: str = Field(..., description="Error message")
    details: dict = Field(default_factory=dict, description="Additional error details")
