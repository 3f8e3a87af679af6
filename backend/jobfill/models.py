"""
Pydantic models for API request/response schemas.
"""
from typing import Optional, List, Dict, Any, Union
from pydantic import BaseModel, Field
from datetime import datetime


class HealthResponse(BaseModel):
    """Health check response model."""
    status: str
    timestamp: datetime


class RateLimitStatus(BaseModel):
    """Verifier call budget status."""
    total_calls: int
    max_calls: int
    remaining_calls: int
    calls_last_minute: int = 0
    calls_by_service: Dict[str, int]


class FieldInput(BaseModel):
    """One discovered form control, as reported by the discovery layer."""
    label: str = Field("", description="Visible label text (e.g., 'First Name*')")
    id: str = Field("", description="Element id, often semantic on Workday (e.g., 'legalName--firstName')")
    name: str = Field("", description="Element name attribute (radio groups carry meaning here)")
    type: str = Field("", description="text | textarea | dropdown | searchable | radio | checkbox | checkbox-group | file")
    options: List[Union[str, Dict[str, Any]]] = Field(default_factory=list, description="Selectable option labels, in order")
    section: str = Field("", description="Surrounding question or section text")
    placeholder: str = Field("", description="Placeholder text")


class ClassifyRequest(BaseModel):
    """Request model for classifying the fields of one page."""
    url: Optional[str] = Field(None, description="Page URL used for platform and company detection")
    fields: List[FieldInput] = Field(..., description="Fields in document order")


class ClassifyResponse(BaseModel):
    """Classification outcome per field plus run metadata."""
    success: bool
    url: Optional[str] = None
    platform: str = "unknown"
    company: str = "unknown"
    fields: List[Dict[str, Any]] = []
    metadata: Optional[Dict[str, Any]] = None
    cache_stats: Optional[Dict[str, Any]] = None
    classifier_stats: Optional[Dict[str, Any]] = None
    error: Optional[str] = None


class FieldTypeInfo(BaseModel):
    """Field type definition."""
    name: str
    category: str
    is_yes_no: bool
    description: Optional[str] = None


class FieldTypesResponse(BaseModel):
    """Response containing the closed field type vocabulary."""
    total_types: int
    types: List[FieldTypeInfo]


class StatsResponse(BaseModel):
    """Cache, classifier and call budget statistics."""
    cache: Dict[str, Any]
    classifier: Dict[str, Any]
    rate_limit: Optional[RateLimitStatus] = None


class LearnedPatternsResponse(BaseModel):
    """Learned patterns selected for review."""
    total: int
    patterns: List[Dict[str, Any]] = Field(default_factory=list, description="Entries with their keys, newest first")


class VerifyPatternRequest(BaseModel):
    """Mark a learned pattern as correct."""
    key: str = Field(..., description="Learned pattern key")
    verified_by: str = Field("manual", description="Reviewer name")


class RejectPatternRequest(BaseModel):
    """Delete an incorrect learned pattern."""
    key: str = Field(..., description="Learned pattern key")


class UpdatePatternTypeRequest(BaseModel):
    """Correct the type of a learned pattern."""
    key: str = Field(..., description="Learned pattern key")
    field_type: str = Field(..., description="Correct field type name (e.g., 'phone_extension')")
    verified_by: str = Field("manual", description="Reviewer name")


class PatternActionResponse(BaseModel):
    """Result of a review action."""
    success: bool
    key: str
    message: str
