import re
from datetime import datetime
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field, PrivateAttr, field_validator

from lexvault.models import AuditAction, AuditOutcome, FileKind, JurisdictionLevel, LegalSystem

MAX_TAGS_PER_DOCUMENT = 20
MAX_TAG_LENGTH = 50
MAX_JURISDICTIONS_PER_DOCUMENT = 50
PASSWORD_MIN_LENGTH = 12
PASSWORD_MAX_LENGTH = 128

_SPECIAL_CHARS = re.compile(r"""[!@#$%^&*()_+\-=\[\]{};':"\\|,.<>/?]""")


def dedupe(items: list) -> list:
    """Drop repeated items, keeping first occurrences in order."""
    return list(dict.fromkeys(items))


def _clean_tags(tags: list[str]) -> list[str]:
    cleaned = dedupe([tag.strip() for tag in tags])
    for tag in cleaned:
        if not tag or len(tag) > MAX_TAG_LENGTH:
            raise ValueError(f"Each tag must be 1-{MAX_TAG_LENGTH} characters")
    if len(cleaned) > MAX_TAGS_PER_DOCUMENT:
        raise ValueError(f"Maximum {MAX_TAGS_PER_DOCUMENT} tags allowed")
    return cleaned


# ============================================================================
# Auth Schemas
# ============================================================================


class RegisterRequest(BaseModel):
    email: EmailStr
    password: str
    display_name: str = Field(min_length=1, max_length=100)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, value: str) -> str:
        return value.strip().lower()

    @field_validator("display_name")
    @classmethod
    def strip_display_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Display name is required")
        return value

    @field_validator("password")
    @classmethod
    def check_password_strength(cls, value: str) -> str:
        if len(value) < PASSWORD_MIN_LENGTH:
            raise ValueError(f"Password must be at least {PASSWORD_MIN_LENGTH} characters long")
        if len(value) > PASSWORD_MAX_LENGTH:
            raise ValueError(f"Password must be {PASSWORD_MAX_LENGTH} characters or fewer")
        if not re.search(r"[A-Z]", value):
            raise ValueError("Password must contain at least one uppercase letter")
        if not re.search(r"[a-z]", value):
            raise ValueError("Password must contain at least one lowercase letter")
        if not re.search(r"\d", value):
            raise ValueError("Password must contain at least one digit")
        if not _SPECIAL_CHARS.search(value):
            raise ValueError("Password must contain at least one special character")
        return value


class LoginRequest(BaseModel):
    email: str
    password: str = Field(min_length=1)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, value: str) -> str:
        return value.strip().lower()


class RefreshRequest(BaseModel):
    refresh_token: str = Field(min_length=1)


class TokenPair(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"


class UserResponse(BaseModel):
    id: UUID
    email: str
    display_name: str
    created_at: datetime


class AuthResponse(BaseModel):
    user: UserResponse
    tokens: TokenPair


# ============================================================================
# Jurisdiction Schemas
# ============================================================================


class JurisdictionSummary(BaseModel):
    id: UUID
    code: str
    name: str
    level: JurisdictionLevel


class JurisdictionNode(BaseModel):
    """One arena slot of the jurisdiction tree. Links are IDs, never objects."""

    id: UUID
    code: str
    name: str
    level: JurisdictionLevel
    legal_system: LegalSystem
    geo_code: str | None = None
    population: int | None = None
    parent_id: UUID | None = None
    children_ids: list[UUID] = []


class JurisdictionTreeNode(BaseModel):
    id: UUID
    code: str
    name: str
    level: JurisdictionLevel
    legal_system: LegalSystem
    geo_code: str | None = None
    population: int | None = None
    parent_id: UUID | None = None
    children: list["JurisdictionTreeNode"] = []


class JurisdictionTree(BaseModel):
    """Root-anchored forest stored as a flat arena of nodes."""

    nodes: list[JurisdictionNode]
    root_ids: list[UUID]

    _index: dict[UUID, JurisdictionNode] = PrivateAttr(default_factory=dict)

    def model_post_init(self, __context: Any) -> None:
        self._index = {node.id: node for node in self.nodes}

    def get(self, node_id: UUID) -> JurisdictionNode | None:
        return self._index.get(node_id)

    def children_of(self, node_id: UUID) -> list[JurisdictionNode]:
        node = self._index.get(node_id)
        if node is None:
            return []
        return [self._index[child_id] for child_id in node.children_ids]

    def roots(self) -> list[JurisdictionNode]:
        return [self._index[root_id] for root_id in self.root_ids]

    def to_nested(self) -> list[JurisdictionTreeNode]:
        """Expand the arena into nested nodes for API responses."""

        def expand(node: JurisdictionNode) -> JurisdictionTreeNode:
            return JurisdictionTreeNode(
                **node.model_dump(exclude={"children_ids"}),
                children=[expand(child) for child in self.children_of(node.id)],
            )

        return [expand(root) for root in self.roots()]


class JurisdictionRef(BaseModel):
    id: UUID
    code: str
    name: str


class JurisdictionDetail(BaseModel):
    id: UUID
    code: str
    name: str
    level: JurisdictionLevel
    legal_system: LegalSystem
    geo_code: str | None = None
    population: int | None = None
    parent: JurisdictionRef | None = None
    children: list[JurisdictionSummary] = []


# ============================================================================
# Document Schemas
# ============================================================================


class UploadRequest(BaseModel):
    title: str = Field(max_length=255)
    description: str = Field(default="", max_length=5000)
    tags: list[str] = []
    jurisdiction_ids: list[UUID]

    @field_validator("title")
    @classmethod
    def strip_title(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Title is required")
        return value

    @field_validator("description")
    @classmethod
    def strip_description(cls, value: str) -> str:
        return value.strip()

    @field_validator("tags")
    @classmethod
    def clean_tags(cls, value: list[str]) -> list[str]:
        return _clean_tags(value)

    @field_validator("jurisdiction_ids")
    @classmethod
    def dedupe_jurisdictions(cls, value: list[UUID]) -> list[UUID]:
        value = dedupe(value)
        if not value:
            raise ValueError("At least one jurisdiction is required")
        if len(value) > MAX_JURISDICTIONS_PER_DOCUMENT:
            raise ValueError(f"Maximum {MAX_JURISDICTIONS_PER_DOCUMENT} jurisdictions allowed")
        return value


class UpdateRequest(BaseModel):
    title: str | None = Field(default=None, max_length=255)
    description: str | None = Field(default=None, max_length=5000)
    tags: list[str] | None = None

    @field_validator("title")
    @classmethod
    def strip_title(cls, value: str | None) -> str | None:
        if value is None:
            return None
        value = value.strip()
        if not value:
            raise ValueError("Title must not be empty")
        return value

    @field_validator("description")
    @classmethod
    def strip_description(cls, value: str | None) -> str | None:
        return value.strip() if value is not None else None

    @field_validator("tags")
    @classmethod
    def clean_tags(cls, value: list[str] | None) -> list[str] | None:
        return _clean_tags(value) if value is not None else None


SortField = Literal["uploaded_at", "title", "file_size_bytes", "updated_at"]


class DocumentQuery(BaseModel):
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=20, ge=1, le=100)
    search: str | None = Field(default=None, max_length=200)
    jurisdiction_level: JurisdictionLevel | None = None
    jurisdiction_id: UUID | None = None
    file_kind: FileKind | None = None
    sort_by: SortField = "uploaded_at"
    sort_order: Literal["asc", "desc"] = "desc"
    date_from: datetime | None = None
    date_to: datetime | None = None


class DocumentResponse(BaseModel):
    id: UUID
    owner_id: UUID
    title: str
    description: str
    tags: list[str]
    file_kind: FileKind
    file_size_bytes: int
    original_filename: str
    jurisdictions: list[JurisdictionSummary]
    uploaded_at: datetime
    updated_at: datetime


class Pagination(BaseModel):
    page: int
    page_size: int
    total: int
    total_pages: int


class DocumentListResponse(BaseModel):
    items: list[DocumentResponse]
    pagination: Pagination


# ============================================================================
# Audit Schemas
# ============================================================================


class AuditChange(BaseModel):
    field: str
    before: Any = None
    after: Any = None


class AuditEntry(BaseModel):
    action: AuditAction
    resource_type: Literal["document", "user", "token"]
    resource_id: str
    request_id: str
    client_ip: str = "0.0.0.0"
    actor_user_id: UUID | None = None
    outcome: AuditOutcome = AuditOutcome.SUCCESS
    changes: list[AuditChange] | None = None
    failure_reason: str | None = None


# ============================================================================
# Health
# ============================================================================


class ComponentHealth(BaseModel):
    status: Literal["healthy", "unhealthy"]
    latency_ms: int | None = None
    error: str | None = None


class HealthResponse(BaseModel):
    status: Literal["healthy", "degraded"]
    checks: dict[str, ComponentHealth]
