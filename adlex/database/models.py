"""SQLAlchemy models for the check pipeline tables."""

import uuid
from datetime import datetime

from pgvector.sqlalchemy import Vector
from sqlalchemy import CheckConstraint, ForeignKey, Index, Integer, String, Text, TIMESTAMP
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from adlex.config import settings
from adlex.core.database import Base


class Organization(Base):
    """Tenant owning checks and a phrase dictionary."""

    __tablename__ = "organizations"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    name: Mapped[str] = mapped_column(String, nullable=False)
    plan: Mapped[str] = mapped_column(String, nullable=False, default="trial")
    max_checks: Mapped[int] = mapped_column(Integer, nullable=False, default=100)
    # Only ever changed by OrganizationRepository.increment_usage
    used_checks: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default="NOW()"
    )

    checks: Mapped[list["Check"]] = relationship("Check", back_populates="organization")
    dictionary_entries: Mapped[list["DictionaryEntry"]] = relationship(
        "DictionaryEntry", back_populates="organization", cascade="all, delete-orphan"
    )


class Check(Base):
    """One compliance check of a text or image advertisement."""

    __tablename__ = "checks"
    __mapper_args__ = {"eager_defaults": True}
    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'processing', 'completed', 'failed')", name="ck_checks_status"
        ),
        CheckConstraint("input_type IN ('text', 'image')", name="ck_checks_input_type"),
        CheckConstraint(
            "ocr_status IS NULL OR input_type = 'image'", name="ck_checks_ocr_status_image_only"
        ),
        Index("ix_checks_organization_status", "organization_id", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    organization_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("organizations.id"), nullable=False
    )
    user_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True)
    input_type: Mapped[str] = mapped_column(String, nullable=False, default="text")
    original_text: Mapped[str] = mapped_column(Text, nullable=False, default="")
    image_url: Mapped[str | None] = mapped_column(String, nullable=True)
    extracted_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    modified_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(
        String, nullable=False, default="pending"
    )  # pending | processing | completed | failed
    ocr_status: Mapped[str | None] = mapped_column(
        String, nullable=True
    )  # processing | completed | failed, image checks only
    ocr_metadata: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default="NOW()"
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default="NOW()", onupdate=datetime.utcnow
    )
    completed_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)

    organization: Mapped["Organization"] = relationship("Organization", back_populates="checks")
    violations: Mapped[list["Violation"]] = relationship(
        "Violation",
        back_populates="check",
        cascade="all, delete-orphan",
        order_by="Violation.start_pos",
    )


class Violation(Base):
    """A flagged span in the analyzed text of a check."""

    __tablename__ = "violations"
    __table_args__ = (
        CheckConstraint("start_pos >= 0 AND end_pos >= start_pos", name="ck_violations_offsets"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    check_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("checks.id", ondelete="CASCADE"), nullable=False, index=True
    )
    start_pos: Mapped[int] = mapped_column(Integer, nullable=False)
    end_pos: Mapped[int] = mapped_column(Integer, nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    dictionary_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("dictionaries.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default="NOW()"
    )

    check: Mapped["Check"] = relationship("Check", back_populates="violations")


class DictionaryEntry(Base):
    """Organization-specific NG/ALLOW phrase with its embedding."""

    __tablename__ = "dictionaries"
    __table_args__ = (
        CheckConstraint("category IN ('NG', 'ALLOW')", name="ck_dictionaries_category"),
        Index("ix_dictionaries_organization_category", "organization_id", "category"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    organization_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    phrase: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[str] = mapped_column(String, nullable=False, default="NG")
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    vector: Mapped[list[float] | None] = mapped_column(
        Vector(settings.llm.embedding_dimensions), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default="NOW()"
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default="NOW()", onupdate=datetime.utcnow
    )

    organization: Mapped["Organization"] = relationship(
        "Organization", back_populates="dictionary_entries"
    )
