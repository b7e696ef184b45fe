import enum
from datetime import datetime, timezone
from uuid import UUID

from sqlalchemy import (
    JSON,
    BigInteger,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    pass


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _values(enum_cls: type[enum.Enum]) -> list[str]:
    return [member.value for member in enum_cls]


JsonType = JSON().with_variant(JSONB(), "postgresql")


# ============================================================================
# Enums
# ============================================================================


class FileKind(str, enum.Enum):
    PDF = "pdf"
    TXT = "txt"


FILE_KIND_MIME_TYPES = {
    FileKind.PDF: "application/pdf",
    FileKind.TXT: "text/plain",
}


class JurisdictionLevel(str, enum.Enum):
    FEDERAL = "federal"
    PROVINCIAL = "provincial"
    TERRITORIAL = "territorial"
    MUNICIPAL = "municipal"


# Provinces and territories sit on the same tier.
LEVEL_RANK = {
    JurisdictionLevel.FEDERAL: 0,
    JurisdictionLevel.PROVINCIAL: 1,
    JurisdictionLevel.TERRITORIAL: 1,
    JurisdictionLevel.MUNICIPAL: 2,
}


class LegalSystem(str, enum.Enum):
    COMMON_LAW = "common_law"
    CIVIL_LAW = "civil_law"
    BIJURAL = "bijural"


class AuditAction(str, enum.Enum):
    DOCUMENT_UPLOAD = "document.upload"
    DOCUMENT_UPDATE = "document.update"
    DOCUMENT_DELETE = "document.delete"
    DOCUMENT_DOWNLOAD = "document.download"
    DOCUMENT_PURGE = "document.purge"
    USER_REGISTER = "user.register"
    USER_LOGIN = "user.login"
    USER_LOGIN_FAILED = "user.login_failed"
    USER_TOKEN_REFRESH = "user.token_refresh"
    USER_TOKEN_REUSE = "user.token_reuse"
    USER_LOGOUT = "user.logout"


class AuditOutcome(str, enum.Enum):
    SUCCESS = "success"
    FAILURE = "failure"


class JobType(str, enum.Enum):
    PURGE_DOCUMENT = "PURGE_DOCUMENT"


class JobStatus(str, enum.Enum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"


# ============================================================================
# Users
# ============================================================================


class User(Base):
    __tablename__ = "user_account"

    id: Mapped[UUID] = mapped_column(primary_key=True)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    password_hash: Mapped[str] = mapped_column(Text, nullable=False)
    display_name: Mapped[str] = mapped_column(String(100), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    documents: Mapped[list["Document"]] = relationship(back_populates="owner")


# ============================================================================
# Jurisdictions (static reference data)
# ============================================================================


class Jurisdiction(Base):
    __tablename__ = "jurisdiction"

    id: Mapped[UUID] = mapped_column(primary_key=True)
    code: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    level: Mapped[JurisdictionLevel] = mapped_column(
        Enum(JurisdictionLevel, name="jurisdictionlevel", values_callable=_values),
        nullable=False,
    )
    parent_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("jurisdiction.id", ondelete="RESTRICT"), nullable=True
    )
    legal_system: Mapped[LegalSystem] = mapped_column(
        Enum(LegalSystem, name="legalsystem", values_callable=_values), nullable=False
    )
    geo_code: Mapped[str | None] = mapped_column(String(16), nullable=True)
    population: Mapped[int | None] = mapped_column(Integer, nullable=True)

    __table_args__ = (Index("ix_jurisdiction_parent", "parent_id"),)

    parent: Mapped["Jurisdiction | None"] = relationship(
        remote_side="Jurisdiction.id", back_populates="children"
    )
    children: Mapped[list["Jurisdiction"]] = relationship(back_populates="parent")


# ============================================================================
# Documents
# ============================================================================


class Document(Base):
    __tablename__ = "document"

    id: Mapped[UUID] = mapped_column(primary_key=True)
    owner_id: Mapped[UUID] = mapped_column(
        ForeignKey("user_account.id", ondelete="CASCADE"), nullable=False
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    tags: Mapped[list[str]] = mapped_column(JsonType, nullable=False, default=list)
    file_kind: Mapped[FileKind] = mapped_column(
        Enum(FileKind, name="filekind", values_callable=_values), nullable=False
    )
    file_size_bytes: Mapped[int] = mapped_column(BigInteger, nullable=False)
    original_filename: Mapped[str] = mapped_column(Text, nullable=False)
    content_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    blob_key: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ix_document_owner_deleted", "owner_id", "deleted_at"),
        Index("ix_document_deleted_at", "deleted_at"),
    )

    owner: Mapped["User"] = relationship(back_populates="documents")
    jurisdiction_links: Mapped[list["DocumentJurisdiction"]] = relationship(
        back_populates="document", cascade="all, delete-orphan"
    )


class DocumentJurisdiction(Base):
    __tablename__ = "document_jurisdiction"

    document_id: Mapped[UUID] = mapped_column(
        ForeignKey("document.id", ondelete="CASCADE"), primary_key=True
    )
    jurisdiction_id: Mapped[UUID] = mapped_column(
        ForeignKey("jurisdiction.id", ondelete="RESTRICT"), primary_key=True
    )

    __table_args__ = (Index("ix_document_jurisdiction_jurisdiction", "jurisdiction_id"),)

    document: Mapped["Document"] = relationship(back_populates="jurisdiction_links")
    jurisdiction: Mapped["Jurisdiction"] = relationship()


# ============================================================================
# Audit (append-only)
# ============================================================================


class AuditLog(Base):
    __tablename__ = "audit_log"

    id: Mapped[str] = mapped_column(String(26), primary_key=True)  # ULID
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    actor_user_id: Mapped[UUID | None] = mapped_column(nullable=True)
    actor_ip_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    action: Mapped[AuditAction] = mapped_column(
        Enum(AuditAction, name="auditaction", values_callable=_values), nullable=False
    )
    resource_type: Mapped[str] = mapped_column(String(32), nullable=False)
    resource_id: Mapped[str] = mapped_column(Text, nullable=False)
    changes: Mapped[list[dict] | None] = mapped_column(JsonType, nullable=True)
    request_id: Mapped[str] = mapped_column(Text, nullable=False)
    outcome: Mapped[AuditOutcome] = mapped_column(
        Enum(AuditOutcome, name="auditoutcome", values_callable=_values), nullable=False
    )
    failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        Index("ix_audit_log_resource", "resource_type", "resource_id"),
        Index("ix_audit_log_actor", "actor_user_id"),
    )


# ============================================================================
# Jobs
# ============================================================================


class Job(Base):
    __tablename__ = "job"

    id: Mapped[UUID] = mapped_column(primary_key=True)
    job_type: Mapped[JobType] = mapped_column(Enum(JobType, name="jobtype"), nullable=False)
    # No FK: the job outlives the purged document row.
    document_id: Mapped[UUID] = mapped_column(nullable=False)
    status: Mapped[JobStatus] = mapped_column(
        Enum(JobStatus, name="jobstatus"), nullable=False, default=JobStatus.PENDING
    )
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    run_after: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    __table_args__ = (Index("ix_job_status_type_run_after", "status", "job_type", "run_after"),)
