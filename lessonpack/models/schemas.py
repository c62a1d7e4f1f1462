"""
Pydantic schemas for request/response validation.
"""
from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import datetime


# Health Check Schema
class HealthCheckResponse(BaseModel):
    """Schema for health check endpoint."""

    status: str
    llm: str
    publishing: str
    timestamp: datetime
    version: str = "0.1.0"


# Pipeline Schemas
class PipelineRunRequest(BaseModel):
    """Optional body for POST /api/pipeline/process-all."""

    input_dir: Optional[str] = Field(
        default=None, description="Directory to scan; defaults to NOTES_INPUT_DIR"
    )


class PipelineStartResponse(BaseModel):
    """Response for POST /api/pipeline/process-all."""

    input_dir: str
    total_files: int
    message: str


class FileOutcomeResponse(BaseModel):
    """Result of one input file within a batch."""

    file: str
    success: bool
    error: Optional[str] = None
    document_url: Optional[str] = None
    document_id: Optional[str] = None
    stage_reached: str
    processing_time_seconds: float


class PipelineStatusResponse(BaseModel):
    """Response for GET /api/pipeline/status."""

    running: bool
    phase: str
    input_dir: Optional[str] = None
    total_files: int = 0
    files_succeeded: int = 0
    files_failed: int = 0
    current_file: Optional[str] = None
    elapsed_seconds: float = 0.0
    errors: List[str] = []
    outcomes: List[FileOutcomeResponse] = []
