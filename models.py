# models.py - SQLAlchemy models of the resource library
from datetime import datetime

from flask_login import UserMixin

from extensions import db
from records import (
    AuditEntry,
    Category as CategoryRecord,
    Procedure as ProcedureRecord,
    Resource as ResourceRecord,
    Role,
    Specialty as SpecialtyRecord,
    Subspecialty as SubspecialtyRecord,
    Suggestion as SuggestionRecord,
    SuggestionStatus,
    UserProfile,
)
from taxonomy_markers import classify_specialty, classify_subspecialty


# ======================
# Users
# ======================
class User(UserMixin, db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(120), unique=True, nullable=False)
    password_hash = db.Column(db.String(255), nullable=True)
    full_name = db.Column(db.String(120))

    # user | subspecialty_admin | specialty_admin | super_admin
    role = db.Column(db.String(30), nullable=False, default="user")
    user_type = db.Column(db.String(20))  # surgeon, resident, student, industry...

    specialty_id = db.Column(
        db.Integer, db.ForeignKey("specialties.id", ondelete="SET NULL"), nullable=True
    )
    subspecialty_id = db.Column(
        db.Integer, db.ForeignKey("subspecialties.id", ondelete="SET NULL"), nullable=True
    )
    onboarding_complete = db.Column(db.Boolean, default=False)

    specialty = db.relationship("Specialty", foreign_keys=[specialty_id])
    subspecialty = db.relationship("Subspecialty", foreign_keys=[subspecialty_id])

    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    __table_args__ = (
        db.Index("ix_users_role", "role"),
        db.Index("ix_users_specialty", "specialty_id"),
        db.Index("ix_users_subspecialty", "subspecialty_id"),
    )

    def get_id(self):
        return str(self.id)

    @property
    def is_admin(self) -> bool:
        return Role.parse(self.role).is_admin

    def to_profile(self) -> UserProfile:
        return UserProfile(
            id=self.id,
            role=Role.parse(self.role),
            specialty_id=self.specialty_id,
            subspecialty_id=self.subspecialty_id,
            onboarding_complete=bool(self.onboarding_complete),
            user_type=self.user_type,
        )

    def __repr__(self):
        return f"<User id={self.id} {self.email} role={self.role}>"


# ======================
# Taxonomy
# ======================
class Specialty(db.Model):
    __tablename__ = "specialties"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(160), unique=True, nullable=False)
    order = db.Column(db.Integer, nullable=False, default=0)

    subspecialties = db.relationship(
        "Subspecialty", backref="specialty", lazy="dynamic", passive_deletes=True
    )

    __table_args__ = (db.Index("ix_specialties_name", "name"),)

    def to_record(self) -> SpecialtyRecord:
        return SpecialtyRecord(
            id=self.id,
            name=self.name,
            order=self.order or 0,
            marker=classify_specialty(self.name),
        )

    def __repr__(self):
        return f"<Specialty id={self.id} {self.name}>"


class Subspecialty(db.Model):
    __tablename__ = "subspecialties"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(160), nullable=False)
    order = db.Column(db.Integer, nullable=False, default=0)
    specialty_id = db.Column(
        db.Integer, db.ForeignKey("specialties.id", ondelete="CASCADE"), nullable=False
    )

    __table_args__ = (
        db.Index("ix_subspecialties_specialty", "specialty_id"),
        db.UniqueConstraint("specialty_id", "name", name="uq_subspecialty_name"),
    )

    def to_record(self) -> SubspecialtyRecord:
        return SubspecialtyRecord(
            id=self.id,
            name=self.name,
            specialty_id=self.specialty_id,
            order=self.order or 0,
            marker=classify_subspecialty(self.name),
        )

    def __repr__(self):
        return f"<Subspecialty id={self.id} {self.name} specialty={self.specialty_id}>"


class Category(db.Model):
    __tablename__ = "categories"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(160), nullable=False)
    order = db.Column(db.Integer, nullable=False, default=0)
    depth = db.Column(db.Integer, nullable=False, default=0)
    subspecialty_id = db.Column(
        db.Integer, db.ForeignKey("subspecialties.id", ondelete="CASCADE"), nullable=False
    )
    # null for top-level categories, one level of nesting only
    parent_category_id = db.Column(
        db.Integer, db.ForeignKey("categories.id", ondelete="CASCADE"), nullable=True
    )

    subspecialty = db.relationship("Subspecialty", lazy="joined")
    parent = db.relationship("Category", remote_side=[id], backref="subcategories")

    __table_args__ = (
        db.Index("ix_categories_subspecialty", "subspecialty_id"),
        db.Index("ix_categories_parent", "parent_category_id"),
        db.Index("ix_categories_order", "order"),
    )

    def to_record(self) -> CategoryRecord:
        return CategoryRecord(
            id=self.id,
            name=self.name,
            subspecialty_id=self.subspecialty_id,
            order=self.order or 0,
            depth=self.depth or 0,
            parent_category_id=self.parent_category_id,
        )

    def __repr__(self):
        return f"<Category id={self.id} {self.name} depth={self.depth} parent={self.parent_category_id}>"


class Procedure(db.Model):
    __tablename__ = "procedures"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    category_id = db.Column(
        db.Integer, db.ForeignKey("categories.id", ondelete="CASCADE"), nullable=False
    )
    key_terms = db.Column(db.JSON, default=list)

    __table_args__ = (db.Index("ix_procedures_category", "category_id"),)

    def to_record(self) -> ProcedureRecord:
        return ProcedureRecord(
            id=self.id,
            name=self.name,
            category_id=self.category_id,
            key_terms=tuple(self.key_terms or ()),
        )

    def __repr__(self):
        return f"<Procedure id={self.id} {self.name} category={self.category_id}>"


# ======================
# Resources
# ======================
class Resource(db.Model):
    __tablename__ = "resources"

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(255), nullable=False)
    url = db.Column(db.Text, nullable=False, default="")
    description = db.Column(db.Text)
    resource_type = db.Column(db.String(30), default="video")
    image_url = db.Column(db.Text)
    keywords = db.Column(db.Text)

    # scoping: at most one of the two is expected
    category_id = db.Column(
        db.Integer, db.ForeignKey("categories.id", ondelete="SET NULL"), nullable=True
    )
    procedure_id = db.Column(
        db.Integer, db.ForeignKey("procedures.id", ondelete="SET NULL"), nullable=True
    )

    is_sponsored = db.Column(db.Boolean, default=False)
    is_featured = db.Column(db.Boolean, default=False)
    is_recommended = db.Column(db.Boolean, default=False)
    duration_seconds = db.Column(db.Integer)

    curated_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"))
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    favorites = db.relationship(
        "Favorite", backref="resource", cascade="all, delete-orphan"
    )

    __table_args__ = (
        db.Index("ix_resources_category", "category_id"),
        db.Index("ix_resources_procedure", "procedure_id"),
        db.Index("ix_resources_created_at", "created_at"),
        db.Index("ix_resources_is_sponsored", "is_sponsored"),
    )

    def to_record(self) -> ResourceRecord:
        return ResourceRecord(
            id=self.id,
            title=self.title,
            url=self.url or "",
            description=self.description or "",
            resource_type=self.resource_type or "video",
            image_url=self.image_url,
            keywords=self.keywords or "",
            category_id=self.category_id,
            procedure_id=self.procedure_id,
            is_sponsored=bool(self.is_sponsored),
            is_featured=bool(self.is_featured),
            is_recommended=bool(self.is_recommended),
            duration_seconds=self.duration_seconds,
            created_at=self.created_at,
        )

    def __repr__(self):
        return f"<Resource id={self.id} {self.title!r} cat={self.category_id} proc={self.procedure_id}>"


class ResourceSuggestion(db.Model):
    __tablename__ = "resource_suggestions"

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(255), nullable=False)
    url = db.Column(db.Text, nullable=False, default="")
    description = db.Column(db.Text)
    resource_type = db.Column(db.String(30), default="video")
    image_url = db.Column(db.Text)
    keywords = db.Column(db.Text)
    category_id = db.Column(
        db.Integer, db.ForeignKey("categories.id", ondelete="SET NULL"), nullable=True
    )
    duration_seconds = db.Column(db.Integer)

    status = db.Column(db.String(20), nullable=False, default="pending")  # pending | approved | rejected
    suggested_by = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    user_specialty_id = db.Column(
        db.Integer, db.ForeignKey("specialties.id", ondelete="SET NULL"), nullable=True
    )
    user_subspecialty_id = db.Column(
        db.Integer, db.ForeignKey("subspecialties.id", ondelete="SET NULL"), nullable=True
    )
    reviewed_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"))
    reviewed_at = db.Column(db.DateTime)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    __table_args__ = (
        db.Index("ix_suggestions_status", "status"),
        db.Index("ix_suggestions_specialty", "user_specialty_id"),
        db.Index("ix_suggestions_subspecialty", "user_subspecialty_id"),
        db.Index("ix_suggestions_created_at", "created_at"),
    )

    def to_record(self) -> SuggestionRecord:
        return SuggestionRecord(
            id=self.id,
            title=self.title,
            suggested_by=self.suggested_by,
            status=SuggestionStatus(self.status or "pending"),
            url=self.url or "",
            description=self.description or "",
            resource_type=self.resource_type or "video",
            image_url=self.image_url,
            keywords=self.keywords or "",
            category_id=self.category_id,
            duration_seconds=self.duration_seconds,
            user_specialty_id=self.user_specialty_id,
            user_subspecialty_id=self.user_subspecialty_id,
            reviewed_by=self.reviewed_by,
            reviewed_at=self.reviewed_at,
            created_at=self.created_at,
        )

    def __repr__(self):
        return f"<ResourceSuggestion id={self.id} {self.title!r} status={self.status}>"


class Favorite(db.Model):
    __tablename__ = "favorites"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    resource_id = db.Column(
        db.Integer, db.ForeignKey("resources.id", ondelete="CASCADE"), nullable=False
    )
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    __table_args__ = (
        db.UniqueConstraint("user_id", "resource_id", name="uq_favorite_user_resource"),
        db.Index("ix_favorites_user", "user_id"),
    )

    def __repr__(self):
        return f"<Favorite user={self.user_id} resource={self.resource_id}>"


# ======================
# Audit (append-only, never read by the engine)
# ======================
class AdminAction(db.Model):
    __tablename__ = "admin_actions"

    id = db.Column(db.Integer, primary_key=True)
    actor_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"))
    action_type = db.Column(db.String(60), nullable=False)
    entity_type = db.Column(db.String(60))
    entity_id = db.Column(db.Integer)
    # "metadata" is reserved on declarative models
    metadata_json = db.Column("metadata", db.JSON, default=dict)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    __table_args__ = (
        db.Index("ix_admin_actions_actor", "actor_id"),
        db.Index("ix_admin_actions_created_at", "created_at"),
    )

    @classmethod
    def from_entry(cls, entry: AuditEntry) -> "AdminAction":
        return cls(
            actor_id=entry.actor_id,
            action_type=entry.action_type,
            entity_type=entry.entity_type,
            entity_id=entry.entity_id,
            metadata_json=dict(entry.metadata or {}),
            created_at=entry.timestamp,
        )

    def __repr__(self):
        return f"<AdminAction id={self.id} {self.action_type} {self.entity_type}#{self.entity_id}>"
