"""Immutable records the scope engine works on.

The SQLAlchemy models in ``models.py`` convert themselves into these with
``to_record()``. Engine code never touches ORM objects, so a pipeline run always
works over a read-only snapshot.
"""

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from taxonomy_markers import SpecialtyMarker


class Role(enum.Enum):
    USER = "user"
    SUBSPECIALTY_ADMIN = "subspecialty_admin"
    SPECIALTY_ADMIN = "specialty_admin"
    SUPER_ADMIN = "super_admin"

    @classmethod
    def parse(cls, value) -> "Role":
        """Unknown or empty role strings fall back to a plain user."""
        if isinstance(value, cls):
            return value
        try:
            return cls((value or "").strip().lower())
        except ValueError:
            return cls.USER

    @property
    def is_admin(self) -> bool:
        return self is not Role.USER


class ScopeKind(enum.Enum):
    ALL_CATEGORIES = "all_categories"
    ALL_UNDER_SPECIALTY = "all_under_specialty"
    UNDER_SUBSPECIALTY = "under_subspecialty"


class SuggestionStatus(enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"

    @property
    def is_terminal(self) -> bool:
        return self is not SuggestionStatus.PENDING


# =============================================================================
# TAXONOMY
# =============================================================================

@dataclass(frozen=True)
class Specialty:
    id: int
    name: str
    order: int = 0
    marker: SpecialtyMarker = SpecialtyMarker.NONE


@dataclass(frozen=True)
class Subspecialty:
    id: int
    name: str
    specialty_id: int
    order: int = 0
    marker: SpecialtyMarker = SpecialtyMarker.NONE


@dataclass(frozen=True)
class Category:
    id: int
    name: str
    subspecialty_id: int
    order: int = 0
    depth: int = 0
    parent_category_id: Optional[int] = None

    @property
    def is_top_level(self) -> bool:
        return self.parent_category_id is None


@dataclass(frozen=True)
class Procedure:
    id: int
    name: str
    category_id: int
    key_terms: tuple[str, ...] = ()


# =============================================================================
# RESOURCES & SUGGESTIONS
# =============================================================================

@dataclass(frozen=True)
class Resource:
    id: int
    title: str
    url: str = ""
    description: str = ""
    resource_type: str = "video"
    image_url: Optional[str] = None
    keywords: str = ""
    category_id: Optional[int] = None
    procedure_id: Optional[int] = None
    is_sponsored: bool = False
    is_featured: bool = False
    is_recommended: bool = False
    duration_seconds: Optional[int] = None
    created_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "url": self.url,
            "description": self.description,
            "resource_type": self.resource_type,
            "image_url": self.image_url,
            "keywords": self.keywords,
            "category_id": self.category_id,
            "procedure_id": self.procedure_id,
            "is_sponsored": self.is_sponsored,
            "is_featured": self.is_featured,
            "is_recommended": self.is_recommended,
            "duration_seconds": self.duration_seconds,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


@dataclass(frozen=True)
class Suggestion:
    id: int
    title: str
    suggested_by: int
    status: SuggestionStatus = SuggestionStatus.PENDING
    url: str = ""
    description: str = ""
    resource_type: str = "video"
    image_url: Optional[str] = None
    keywords: str = ""
    category_id: Optional[int] = None
    duration_seconds: Optional[int] = None
    user_specialty_id: Optional[int] = None
    user_subspecialty_id: Optional[int] = None
    reviewed_by: Optional[int] = None
    reviewed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "url": self.url,
            "description": self.description,
            "resource_type": self.resource_type,
            "image_url": self.image_url,
            "keywords": self.keywords,
            "category_id": self.category_id,
            "duration_seconds": self.duration_seconds,
            "status": self.status.value,
            "suggested_by": self.suggested_by,
            "user_specialty_id": self.user_specialty_id,
            "user_subspecialty_id": self.user_subspecialty_id,
            "reviewed_by": self.reviewed_by,
            "reviewed_at": self.reviewed_at.isoformat() if self.reviewed_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


@dataclass(frozen=True)
class SuggestionFilter:
    """Which suggestions a moderator may see.

    ``column`` names the suggestion field to match on (``None`` means every
    suggestion); ``deny_all`` hides everything.
    """

    column: Optional[str] = None
    value: Optional[int] = None
    deny_all: bool = False

    def matches(self, suggestion: Suggestion) -> bool:
        if self.deny_all:
            return False
        if self.column is None:
            return True
        return getattr(suggestion, self.column) == self.value


# Fields an approval copies from a suggestion onto the new resource.
APPROVABLE_FIELDS = (
    "title",
    "url",
    "description",
    "resource_type",
    "image_url",
    "keywords",
    "category_id",
    "duration_seconds",
)


# =============================================================================
# VIEWER & AUDIT
# =============================================================================

@dataclass(frozen=True)
class UserProfile:
    id: int
    role: Role = Role.USER
    specialty_id: Optional[int] = None
    subspecialty_id: Optional[int] = None
    onboarding_complete: bool = False
    user_type: Optional[str] = None


@dataclass(frozen=True)
class AuditEntry:
    actor_id: int
    action_type: str
    entity_type: str
    entity_id: Optional[int]
    timestamp: datetime
    metadata: dict = field(default_factory=dict)
