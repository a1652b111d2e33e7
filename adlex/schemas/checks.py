"""Request and response models for the checks API."""

from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator

from adlex.core.constants import CheckStatus, InputType, OcrStatus


class CheckCreateRequest(BaseModel):
    """Submit a text or image advertisement for checking.

    Attributes:
        organization_id: Organization whose dictionary and quota apply
        user_id: Submitting user, if known
        input_type: ``text`` or ``image``
        text: Advertisement text (text checks)
        image_url: Public or data URL of the image (image checks)
    """

    organization_id: UUID = Field(..., description="Organization the check belongs to")
    user_id: Optional[UUID] = Field(default=None, description="Submitting user")
    input_type: InputType = Field(default=InputType.TEXT, description="Kind of input")
    text: Optional[str] = Field(
        default=None,
        description="Advertisement text to check",
        examples=["このサプリはがんが治る"],
    )
    image_url: Optional[str] = Field(default=None, description="Image to extract text from")

    @model_validator(mode="after")
    def check_input_present(self) -> "CheckCreateRequest":
        if self.input_type == InputType.TEXT and not (self.text or "").strip():
            raise ValueError("text is required for text checks")
        if self.input_type == InputType.IMAGE and not (self.image_url or "").strip():
            raise ValueError("image_url is required for image checks")
        return self


class ViolationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    start_pos: int
    end_pos: int
    reason: str
    dictionary_id: Optional[UUID] = None


class CheckResponse(BaseModel):
    """Current state of a check."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    organization_id: UUID
    user_id: Optional[UUID] = None
    input_type: InputType
    status: CheckStatus
    original_text: str
    image_url: Optional[str] = None
    extracted_text: Optional[str] = None
    modified_text: Optional[str] = None
    ocr_status: Optional[OcrStatus] = None
    ocr_metadata: Optional[Dict[str, Any]] = None
    error_message: Optional[str] = None
    created_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    violations: List[ViolationResponse] = Field(default_factory=list)

    @classmethod
    def from_check(cls, check: Any, include_violations: bool = True) -> "CheckResponse":
        """Build from an ORM check without touching unloaded relationships."""
        data = {name: getattr(check, name) for name in cls.model_fields if name != "violations"}
        if include_violations:
            data["violations"] = [ViolationResponse.model_validate(v) for v in check.violations]
        return cls(**data)


class CancelCheckResponse(BaseModel):
    check_id: UUID
    status: str = Field(
        ...,
        description="'failed' when cancelled immediately, 'cancelling' while the pipeline winds down",
        examples=["failed", "cancelling"],
    )


class QueueInfo(BaseModel):
    queue_length: int
    processing_count: int
    max_concurrent: int
    available_slots: int
    can_start_new_check: bool


class OrganizationUsage(BaseModel):
    monthly_limit: int
    current_month_checks: int
    remaining_checks: int
    can_perform_check: bool


class QueueStatusResponse(BaseModel):
    """Admission-controller state plus the organization's quota."""

    queue: QueueInfo
    organization: Optional[OrganizationUsage] = None

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "queue": {
                        "queue_length": 0,
                        "processing_count": 1,
                        "max_concurrent": 3,
                        "available_slots": 2,
                        "can_start_new_check": True,
                    },
                    "organization": {
                        "monthly_limit": 100,
                        "current_month_checks": 12,
                        "remaining_checks": 88,
                        "can_perform_check": True,
                    },
                }
            ]
        }
    }


class HealthCheckResponse(BaseModel):
    """Health check response model."""

    status: str = Field(default="healthy", examples=["healthy", "degraded"])
    version: str = Field(..., examples=["0.1.0"])
    service: str = Field(..., examples=["AdLex Check Service"])
    database: Optional[Dict[str, Any]] = None
    queue: Optional[QueueInfo] = None
    cache: Optional[Dict[str, Any]] = None
