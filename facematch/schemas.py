"""
Pydantic models for provider configs, descriptor records and API schemas
"""
import json
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, model_validator

from facematch.config import (
    DEFAULT_CLOUD_A_REGION,
    DEFAULT_MAX_RESULTS,
    DEFAULT_SIMILARITY_THRESHOLD,
)


class ProviderType(str, Enum):
    """Discriminant selecting the recognition backend."""
    CLOUD_A = "cloud_a"
    CLOUD_B = "cloud_b"
    CLOUD_C = "cloud_c"
    CUSTOM_HTTP = "custom_http"
    LOCAL_FALLBACK = "local_fallback"


class DescriptorStatus(str, Enum):
    EXTRACTED = "extracted"
    PENDING = "pending"
    NONE = "none"


# Credential keys each backend cannot work without
REQUIRED_CREDENTIALS: Dict[ProviderType, tuple] = {
    ProviderType.CLOUD_A: ("access_key_id", "secret_access_key"),
    ProviderType.CLOUD_B: ("endpoint", "subscription_key"),
    ProviderType.CLOUD_C: ("project_id", "credentials_json"),
    ProviderType.CUSTOM_HTTP: ("endpoint", "api_key"),
    ProviderType.LOCAL_FALLBACK: (),
}


def validate_credentials(provider_type: ProviderType, credentials: Dict[str, Any]) -> Dict[str, Any]:
    """
    Check and normalize the credential blob for a provider type.

    Returns:
        A new dict with defaults applied.

    Raises:
        ValueError: If a required key is missing or malformed
    """
    provider_type = ProviderType(provider_type)
    cleaned = dict(credentials or {})

    missing = [key for key in REQUIRED_CREDENTIALS[provider_type] if not cleaned.get(key)]
    if missing:
        raise ValueError(
            f"{provider_type.value} provider requires credentials: {', '.join(missing)}"
        )

    if provider_type == ProviderType.CLOUD_A:
        cleaned.setdefault("region", DEFAULT_CLOUD_A_REGION)
    elif provider_type == ProviderType.CLOUD_C:
        blob = cleaned["credentials_json"]
        if isinstance(blob, str):
            try:
                blob = json.loads(blob)
            except json.JSONDecodeError as e:
                raise ValueError(f"credentials_json is not valid JSON: {e}")
        if not isinstance(blob, dict):
            raise ValueError("credentials_json must be a JSON object")
        cleaned["credentials_json"] = blob
    elif provider_type == ProviderType.CUSTOM_HTTP:
        extra = cleaned.get("extra_config") or {}
        if isinstance(extra, str):
            try:
                extra = json.loads(extra)
            except json.JSONDecodeError as e:
                raise ValueError(f"extra_config is not valid JSON: {e}")
        if not isinstance(extra, dict):
            raise ValueError("extra_config must be a JSON object")
        cleaned["extra_config"] = extra
    elif provider_type == ProviderType.LOCAL_FALLBACK:
        cleaned = {}

    return cleaned


class ProviderConfig(BaseModel):
    """Immutable snapshot of a recognition provider configuration"""
    id: str = Field(..., description="Provider UUID")
    name: str = Field(..., description="Display name")
    provider_type: ProviderType = Field(..., description="Backend discriminant")
    active: bool = Field(default=False, description="Whether this is the active provider")
    enabled: bool = Field(default=True, description="Whether the provider may be used")
    credentials: Dict[str, Any] = Field(default_factory=dict, description="Backend-specific credentials")
    similarity_threshold: float = Field(..., ge=0, le=1, description="Minimum similarity for a match")
    max_results: int = Field(..., ge=1, description="Maximum number of matches returned")
    updated_at: Optional[datetime] = Field(default=None, description="Last modification time")

    class Config:
        frozen = True


class ProviderSummary(BaseModel):
    """Provider config as shown by the API, credentials redacted"""
    id: str
    name: str
    provider_type: ProviderType
    active: bool
    enabled: bool
    similarity_threshold: float
    max_results: int
    credential_keys: List[str] = Field(default_factory=list, description="Configured credential names")

    @classmethod
    def from_config(cls, config: ProviderConfig) -> "ProviderSummary":
        return cls(
            id=config.id,
            name=config.name,
            provider_type=config.provider_type,
            active=config.active,
            enabled=config.enabled,
            similarity_threshold=config.similarity_threshold,
            max_results=config.max_results,
            credential_keys=sorted(config.credentials.keys()),
        )


class ProviderCreate(BaseModel):
    """Schema for creating a provider"""
    name: str = Field(..., min_length=1, max_length=255, description="Provider name")
    provider_type: ProviderType = Field(..., description="Backend discriminant")
    credentials: Dict[str, Any] = Field(default_factory=dict, description="Backend-specific credentials")
    similarity_threshold: float = Field(DEFAULT_SIMILARITY_THRESHOLD, ge=0, le=1)
    max_results: int = Field(DEFAULT_MAX_RESULTS, ge=1)
    enabled: bool = Field(default=True)

    @model_validator(mode="after")
    def check_credentials(self) -> "ProviderCreate":
        self.credentials = validate_credentials(self.provider_type, self.credentials)
        return self

    class Config:
        json_schema_extra = {
            "example": {
                "name": "Partner photo matching",
                "provider_type": "cloud_b",
                "credentials": {
                    "endpoint": "https://example.cognitiveservices.azure.com",
                    "subscription_key": "<key>"
                },
                "similarity_threshold": 0.7,
                "max_results": 10,
                "enabled": True
            }
        }


class DescriptorRecord(BaseModel):
    """Stored face descriptor for one entity"""
    entity_id: str = Field(..., description="Relationship id owning the photo")
    descriptor_id: Optional[str] = Field(default=None, description="Opaque descriptor issued by the provider")
    provider_type: Optional[ProviderType] = Field(default=None, description="Provider that issued the descriptor")
    source_photo_url: str = Field(..., description="Photo the descriptor was extracted from")
    status: DescriptorStatus = Field(default=DescriptorStatus.NONE, description="Extraction status")
    updated_at: Optional[datetime] = Field(default=None, description="Last extraction attempt")

    class Config:
        from_attributes = True
        json_schema_extra = {
            "example": {
                "entity_id": "550e8400-e29b-41d4-a716-446655440000",
                "descriptor_id": "local_1x9k2p",
                "provider_type": "local_fallback",
                "source_photo_url": "https://cdn.example.com/partners/550e8400.jpg",
                "status": "extracted",
                "updated_at": "2024-01-15T10:30:00"
            }
        }


class MatchResult(BaseModel):
    """Schema for a single match with partner display data"""
    entity_id: str = Field(..., description="Relationship id of the matched photo")
    similarity: float = Field(..., ge=0, le=1, description="Similarity score (0-1, higher is better)")
    name: str = Field(..., description="Partner name")
    phone: Optional[str] = Field(default=None, description="Partner phone")
    status: Optional[str] = Field(default=None, description="Relationship status")
    photo_url: Optional[str] = Field(default=None, description="Registered partner photo")

    class Config:
        json_schema_extra = {
            "example": {
                "entity_id": "550e8400-e29b-41d4-a716-446655440000",
                "similarity": 0.92,
                "name": "Jane Doe",
                "phone": "+15550100",
                "status": "verified",
                "photo_url": "https://cdn.example.com/partners/550e8400.jpg"
            }
        }


class SearchResponse(BaseModel):
    """Schema for search API response"""
    provider_available: bool = Field(..., description="Whether an active provider was configured")
    face_detected: bool = Field(..., description="Whether the query image produced a descriptor")
    threshold: Optional[float] = Field(default=None, description="Similarity threshold applied")
    matches: List[MatchResult] = Field(default_factory=list, description="Matches, best first")
    processing_time_ms: float = Field(..., description="Processing time in milliseconds")


class RegenerationReport(BaseModel):
    """Outcome of a batch descriptor regeneration run"""
    success: int = Field(default=0, description="Entities with a fresh descriptor")
    failed: int = Field(default=0, description="Entities left pending or errored")
    errors: List[str] = Field(default_factory=list, description="One message per failure category")
    processed: int = Field(default=0, description="Entities attempted")
    total: int = Field(default=0, description="Entities selected for the run")
    cancelled: bool = Field(default=False, description="Whether the run stopped early")


class EntityCreate(BaseModel):
    """Schema for registering a relationship partner photo"""
    partner_name: str = Field(..., min_length=1, max_length=255, description="Partner name")
    partner_phone: Optional[str] = Field(default=None, description="Partner phone")
    status: str = Field(default="pending", description="Relationship status")
    photo_url: str = Field(..., min_length=1, description="Fetchable photo URL or data URI")


class EntityResponse(BaseModel):
    """Schema for entity registration response"""
    success: bool = Field(..., description="Whether the operation succeeded")
    message: str = Field(..., description="Status message")
    entity_id: str = Field(..., description="Relationship id")
    descriptor: Optional[DescriptorRecord] = Field(default=None, description="Stored descriptor record")


class DeleteResponse(BaseModel):
    """Schema for delete response"""
    success: bool = Field(..., description="Whether the operation succeeded")
    message: str = Field(..., description="Status message")
    deleted_id: Optional[str] = Field(default=None, description="Id of the deleted object")


class ErrorResponse(BaseModel):
    """Schema for error responses"""
    error: str = Field(..., description="Error type")
    detail: str = Field(..., description="Detailed error message")

    class Config:
        json_schema_extra = {
            "example": {
                "error": "NoFaceDetected",
                "detail": "No face detected in the provided image"
            }
        }
