# resource_admin.py - admin-side resource management + audit helper
import logging
from datetime import datetime
from typing import Mapping, Optional

from errors import InvalidInput, InvalidResourceLink, ModerationForbidden, RecordNotFound, StoreError
from records import AuditEntry, Resource, UserProfile

logger = logging.getLogger(__name__)

# ======================
# Audit catalogue
# ======================
ACTION_SUGGESTION_APPROVED = "suggestion_approved"
ACTION_SUGGESTION_REJECTED = "suggestion_rejected"
ACTION_SUGGESTION_UPDATED = "suggestion_updated"
ACTION_RESOURCE_CREATED = "resource_created"
ACTION_RESOURCE_UPDATED = "resource_updated"
ACTION_RESOURCE_DELETED = "resource_deleted"
ACTION_CATEGORY_CREATED = "category_created"
ACTION_CATEGORY_RENAMED = "category_renamed"
ACTION_CATEGORY_DELETED = "category_deleted"
ACTION_CATEGORIES_REORDERED = "categories_reordered"

ENTITY_RESOURCE = "resource"
ENTITY_SUGGESTION = "resource_suggestion"
ENTITY_CATEGORY = "category"

RESOURCE_TYPES = ("video", "article", "podcast", "guideline", "other")

_INT_FIELDS = (
    "category_id",
    "procedure_id",
    "duration_seconds",
    "user_specialty_id",
    "user_subspecialty_id",
    "subspecialty_id",
    "parent_category_id",
)
_BOOL_FIELDS = ("is_sponsored", "is_featured", "is_recommended")
_TEXT_FIELDS = ("title", "name", "url", "description", "image_url", "keywords")

EDITABLE_RESOURCE_FIELDS = (
    "title",
    "url",
    "description",
    "resource_type",
    "image_url",
    "keywords",
    "category_id",
    "procedure_id",
    "is_sponsored",
    "is_featured",
    "is_recommended",
    "duration_seconds",
)


def record_admin_action(
    store,
    actor_id,
    action_type: str,
    entity_type: str,
    entity_id,
    metadata: Optional[dict] = None,
    now: Optional[datetime] = None,
) -> None:
    """Append an audit entry. Never raises: a failed write is only logged."""
    entry = AuditEntry(
        actor_id=actor_id,
        action_type=action_type,
        entity_type=entity_type,
        entity_id=entity_id,
        timestamp=now or datetime.utcnow(),
        metadata=dict(metadata or {}),
    )
    try:
        store.append_audit_log(entry)
    except StoreError as e:
        logger.warning(
            "[AUDIT] %s on %s#%s by %s not recorded: %s",
            action_type,
            entity_type,
            entity_id,
            actor_id,
            e.message,
        )


# ======================
# Form cleaning
# ======================
def _to_int(value, name):
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    if isinstance(value, bool):
        raise InvalidInput(f"'{name}' must be a whole number.")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise InvalidInput(f"'{name}' must be a whole number.")


def _to_bool(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


def clean_fields(data: Mapping, allowed, partial: bool = False) -> dict:
    """Normalise submitted form/JSON values for the ``allowed`` fields.

    With ``partial`` only keys present in ``data`` are returned (edits);
    otherwise every allowed field gets a value and a title is required.
    """
    out = {}
    for name in allowed:
        if partial and name not in data:
            continue
        raw = data.get(name)
        if name in _INT_FIELDS:
            out[name] = _to_int(raw, name)
        elif name in _BOOL_FIELDS:
            out[name] = _to_bool(raw)
        elif name == "resource_type":
            rtype = (raw or "").strip().lower() or "video"
            if rtype not in RESOURCE_TYPES:
                raise InvalidInput(f"Unknown resource type '{rtype}'.")
            out[name] = rtype
        elif name in _TEXT_FIELDS:
            text = (raw or "").strip()
            out[name] = text or (None if name == "image_url" else "")

    if "title" in out and not out["title"]:
        raise InvalidInput("A title is required.")

    duration = out.get("duration_seconds")
    if duration is not None and duration < 0:
        raise InvalidInput("'duration_seconds' cannot be negative.")
    # duration only means something for videos
    if "resource_type" in out and out["resource_type"] != "video" and "duration_seconds" in allowed:
        out["duration_seconds"] = None
    return out


def check_links(store, fields: Mapping) -> None:
    category_id = fields.get("category_id")
    if category_id is not None and store.get_category(category_id) is None:
        raise InvalidResourceLink(f"Category {category_id} does not exist.")
    procedure_id = fields.get("procedure_id")
    if procedure_id is not None and store.get_procedure(procedure_id) is None:
        raise InvalidResourceLink(f"Procedure {procedure_id} does not exist.")


def check_single_scope(category_id, procedure_id) -> None:
    """A resource hangs off a category or a procedure, never both."""
    if category_id is not None and procedure_id is not None:
        raise InvalidInput("Link the resource to a category or a procedure, not both.")


def _require_admin(profile: UserProfile) -> None:
    if not profile.role.is_admin:
        raise ModerationForbidden("Admin access required.")


# ======================
# Operations
# ======================
def create_resource(store, profile: UserProfile, data: Mapping) -> Resource:
    _require_admin(profile)
    fields = clean_fields(data, EDITABLE_RESOURCE_FIELDS)
    check_single_scope(fields.get("category_id"), fields.get("procedure_id"))
    check_links(store, fields)
    fields["curated_by"] = profile.id

    resource = store.create_resource(fields)
    record_admin_action(
        store, profile.id, ACTION_RESOURCE_CREATED, ENTITY_RESOURCE, resource.id, {"title": resource.title}
    )
    logger.info("[ADMIN] resource %s created by %s", resource.id, profile.id)
    return resource


def update_resource(store, profile: UserProfile, resource_id: int, data: Mapping) -> Resource:
    _require_admin(profile)
    existing = store.get_resource(resource_id)
    if existing is None:
        raise RecordNotFound(f"Resource {resource_id} not found.")
    fields = clean_fields(data, EDITABLE_RESOURCE_FIELDS, partial=True)
    check_single_scope(
        fields.get("category_id", existing.category_id),
        fields.get("procedure_id", existing.procedure_id),
    )
    check_links(store, fields)

    resource = store.update_resource(resource_id, fields)
    if resource is None:
        raise RecordNotFound(f"Resource {resource_id} not found.")
    record_admin_action(
        store,
        profile.id,
        ACTION_RESOURCE_UPDATED,
        ENTITY_RESOURCE,
        resource_id,
        {"fields": sorted(fields)},
    )
    logger.info("[ADMIN] resource %s updated by %s (%s)", resource_id, profile.id, ", ".join(sorted(fields)))
    return resource


def delete_resource(store, profile: UserProfile, resource_id: int) -> None:
    _require_admin(profile)
    existing = store.get_resource(resource_id)
    if existing is None or not store.delete_resource(resource_id):
        raise RecordNotFound(f"Resource {resource_id} not found.")
    record_admin_action(
        store, profile.id, ACTION_RESOURCE_DELETED, ENTITY_RESOURCE, resource_id, {"title": existing.title}
    )
    logger.info("[ADMIN] resource %s deleted by %s", resource_id, profile.id)
