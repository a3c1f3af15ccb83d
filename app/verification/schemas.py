"""
Pydantic schemas for verification endpoints.
"""

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional
from pydantic import BaseModel, Field

from app.models import AlertType, VerificationStatus, VerificationType, WorkerStatus


# Request schemas
class DocumentInput(BaseModel):
    """Evidence document already uploaded to document storage."""

    type: str = Field(
        ..., min_length=1, description="Document type, e.g. passport or first_aid_certificate"
    )
    file_url: str = Field(..., min_length=1, description="Storage URL of the document")
    metadata: Optional[Dict[str, Any]] = None


class InitiateVerificationRequest(BaseModel):
    """Request to start a verification with the type's provider."""

    data: Dict[str, Any] = Field(
        default_factory=dict, description="Provider-specific submission fields"
    )
    documents: List[DocumentInput] = Field(default_factory=list)


class BundleVerificationRequest(BaseModel):
    """Initiate several verification types for one worker."""

    verifications: Dict[str, InitiateVerificationRequest] = Field(
        ..., description="Submission per verification type, e.g. {'VEVO': {...}}"
    )


class ManualDecisionRequest(BaseModel):
    """Reviewer decision for manual-review verifications."""

    decision: Literal["cleared", "excluded"]
    expires_at: Optional[datetime] = Field(
        None, description="Credential expiry; a default validity applies when omitted"
    )
    notes: Optional[str] = Field(None, max_length=2000)


# Response schemas
class VerificationDocumentResponse(BaseModel):
    id: str
    document_type: str
    file_url: str
    metadata: Optional[Dict[str, Any]] = Field(
        default=None, validation_alias="document_metadata"
    )
    uploaded_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class VerificationRecordResponse(BaseModel):
    """Response for a verification record (without documents)."""

    id: str
    worker_id: str
    verification_type: VerificationType
    provider: str
    status: VerificationStatus
    provider_request_id: Optional[str] = None
    verified_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    error_message: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = Field(
        default=None, validation_alias="record_metadata"
    )
    consecutive_poll_failures: int = 0
    last_checked_at: Optional[datetime] = None
    supersedes_id: Optional[str] = None
    superseded_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class VerificationRecordDetail(VerificationRecordResponse):
    documents: List[VerificationDocumentResponse] = []


class VerificationAlertResponse(BaseModel):
    id: str
    worker_id: str
    verification_record_id: Optional[str] = None
    alert_type: AlertType
    message: str
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class InitiateVerificationResponse(BaseModel):
    verification: VerificationRecordResponse
    created: bool


class BundleVerificationResponse(BaseModel):
    results: Dict[str, InitiateVerificationResponse] = {}
    errors: Dict[str, str] = {}
    worker_status: WorkerStatus


class WorkerVerificationsResponse(BaseModel):
    """All verification records (current and superseded) for a worker."""

    worker_id: str
    worker_status: WorkerStatus
    verifications: List[VerificationRecordDetail]
    alerts: List[VerificationAlertResponse]
