"""
API request / response models for FastAPI.
"""

from typing import Optional

from pydantic import BaseModel, Field


class JobResponse(BaseModel):
    id: str
    filename: str
    status: str
    progress: int = 0
    message: str = ""
    document_id: Optional[str] = None
    result: Optional[dict] = None
    error_message: Optional[str] = None
    created_at: str = ""
    updated_at: str = ""
    completed_at: Optional[str] = None


class DocumentInfo(BaseModel):
    id: str
    filename: str
    page_count: int = 0
    chunk_count: int = 0
    parse_tier: str = ""
    created_at: str = ""
    processed_at: Optional[str] = None


class DocumentsResponse(BaseModel):
    documents: list[DocumentInfo] = Field(default_factory=list)


class MetricsResponse(BaseModel):
    document_id: str
    metrics: dict
    validation: Optional[dict] = None


class HealthResponse(BaseModel):
    status: str = "ok"
    llm_configured: bool = False
    parser_configured: bool = False
    ollama_available: bool = False
