"""
Unified database models for the application.
All SQLAlchemy models are defined here.
"""

from sqlalchemy import (
    JSON,
    Column,
    String,
    DateTime,
    ForeignKey,
    Enum,
    Integer,
    Text,
    Index,
    text,
)
from sqlalchemy.ext.declarative import declarative_base
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import enum

Base = declarative_base()


# Enums
class VerificationType(enum.Enum):
    IDENTITY = "IDENTITY"
    VEVO = "VEVO"
    WWCC = "WWCC"
    NDIS = "NDIS"
    FIRST_AID = "FIRST_AID"
    ABN = "ABN"
    TFN = "TFN"


class VerificationStatus(enum.Enum):
    """Canonical, provider-agnostic status of a verification record"""

    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    VERIFIED = "VERIFIED"
    FAILED = "FAILED"
    EXPIRED = "EXPIRED"
    SUSPENDED = "SUSPENDED"


class WorkerStatus(enum.Enum):
    ONBOARDING_IN_PROGRESS = "ONBOARDING_IN_PROGRESS"
    VERIFIED = "VERIFIED"
    REJECTED = "REJECTED"
    SUSPENDED = "SUSPENDED"


class OnboardingStatus(enum.Enum):
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"


class AlertType(enum.Enum):
    VERIFICATION_EXPIRED = "VERIFICATION_EXPIRED"
    VERIFICATION_FAILED = "VERIFICATION_FAILED"
    STATUS_CHANGED = "STATUS_CHANGED"
    EXPIRING_SOON = "EXPIRING_SOON"


class Worker(Base):
    """
    Service-delivery worker.

    `status` is a cache derived from the worker's verification records and is
    only written by the orchestrator's worker-status recompute.
    """

    __tablename__ = "workers"

    id = Column(String, primary_key=True)
    user_id = Column(String, nullable=False, index=True)  # Owning account
    name = Column(String, nullable=False)

    status = Column(
        Enum(WorkerStatus),
        nullable=False,
        default=WorkerStatus.ONBOARDING_IN_PROGRESS,
    )
    onboarding_status = Column(
        Enum(OnboardingStatus), nullable=False, default=OnboardingStatus.IN_PROGRESS
    )
    required_verification_types = Column(
        JSON, nullable=True
    )  # NULL means the configured default applies

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    # Relationships
    verification_records = relationship(
        "VerificationRecord", back_populates="worker"
    )


class VerificationRecord(Base):
    """
    One third-party credential check for a worker.

    Exactly one current (non-superseded) record exists per
    (worker_id, verification_type). Records are never deleted; a new check
    after a terminal outcome supersedes the previous record.
    """

    __tablename__ = "verification_records"

    id = Column(String, primary_key=True)
    worker_id = Column(
        String, ForeignKey("workers.id", ondelete="CASCADE"), nullable=False
    )
    verification_type = Column(Enum(VerificationType), nullable=False)
    provider = Column(String, nullable=False)  # 'oho', 'vsure', 'chandler', ...
    status = Column(
        Enum(VerificationStatus), nullable=False, default=VerificationStatus.PENDING
    )

    # Provider correlation
    provider_request_id = Column(String, nullable=True)
    submitted_data = Column(JSON, nullable=True)  # Sensitive fields redacted
    provider_response = Column(JSON, nullable=True)  # Raw payload, audit only

    verified_at = Column(DateTime(timezone=True), nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    error_message = Column(Text, nullable=True)
    record_metadata = Column(
        "metadata", JSON, nullable=True
    )  # Opaque side channel, replaced as a whole value

    # Poll reconciliation
    consecutive_poll_failures = Column(Integer, nullable=False, default=0)
    last_checked_at = Column(DateTime(timezone=True), nullable=True)

    # Supersession chain
    supersedes_id = Column(
        String, ForeignKey("verification_records.id"), nullable=True
    )
    superseded_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    # Relationships
    worker = relationship("Worker", back_populates="verification_records")
    documents = relationship(
        "VerificationDocument",
        back_populates="verification_record",
        order_by="VerificationDocument.uploaded_at",
    )
    alerts = relationship(
        "VerificationAlert",
        back_populates="verification_record",
        order_by="VerificationAlert.created_at",
    )

    __table_args__ = (
        Index(
            "uq_verification_records_current_pair",
            "worker_id",
            "verification_type",
            unique=True,
            postgresql_where=text("superseded_at IS NULL"),
            sqlite_where=text("superseded_at IS NULL"),
        ),
        Index("idx_verification_records_provider_request", "provider_request_id"),
        Index("idx_verification_records_status", "status"),
        Index("idx_verification_records_expires_at", "expires_at"),
    )


class VerificationDocument(Base):
    """Evidence attachment for a verification record. Immutable once created."""

    __tablename__ = "verification_documents"

    id = Column(String, primary_key=True)
    verification_record_id = Column(
        String,
        ForeignKey("verification_records.id", ondelete="CASCADE"),
        nullable=False,
    )
    document_type = Column(String, nullable=False)  # 'passport', 'first_aid_certificate', ...
    file_url = Column(Text, nullable=False)  # Location in external document storage
    document_metadata = Column("metadata", JSON, nullable=True)
    uploaded_at = Column(DateTime(timezone=True), server_default=func.now())

    verification_record = relationship(
        "VerificationRecord", back_populates="documents"
    )

    __table_args__ = (
        Index("idx_verification_documents_record", "verification_record_id"),
    )


class VerificationAlert(Base):
    """Append-only alert produced on meaningful verification transitions."""

    __tablename__ = "verification_alerts"

    id = Column(String, primary_key=True)
    worker_id = Column(
        String, ForeignKey("workers.id", ondelete="CASCADE"), nullable=False
    )
    verification_record_id = Column(
        String,
        ForeignKey("verification_records.id", ondelete="CASCADE"),
        nullable=True,
    )
    alert_type = Column(Enum(AlertType), nullable=False)
    message = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    verification_record = relationship("VerificationRecord", back_populates="alerts")

    __table_args__ = (
        Index("idx_verification_alerts_worker", "worker_id"),
        Index(
            "idx_verification_alerts_record_type",
            "verification_record_id",
            "alert_type",
        ),
    )
