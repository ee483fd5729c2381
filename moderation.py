"""Suggestion moderation.

A suggestion starts ``pending`` and ends ``approved`` or ``rejected``; both end
states are final. Who may see (and therefore act on) a suggestion depends only
on the moderator's role and the specialty ids on their profile, see
``CAPABILITIES``.

Approval writes the new resource first and only then flips the suggestion, with
a compare-and-set on ``pending``. If another moderator got there first the
resource just written is removed again.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Mapping, Optional

from errors import (
    ModerationForbidden,
    RecordNotFound,
    ResourceCreationFailure,
    StoreError,
    SuggestionTransitionConflict,
)
from records import (
    APPROVABLE_FIELDS,
    Resource,
    Role,
    Suggestion,
    SuggestionFilter,
    SuggestionStatus,
    UserProfile,
)
from resource_admin import (
    ACTION_SUGGESTION_APPROVED,
    ACTION_SUGGESTION_REJECTED,
    ACTION_SUGGESTION_UPDATED,
    ENTITY_SUGGESTION,
    check_links,
    clean_fields,
    record_admin_action,
)

logger = logging.getLogger(__name__)

SUGGESTION_FORM_FIELDS = (
    "title",
    "url",
    "description",
    "resource_type",
    "image_url",
    "keywords",
    "category_id",
    "duration_seconds",
)
# admins may also move a suggestion to another specialty/subspecialty
EDITABLE_SUGGESTION_FIELDS = SUGGESTION_FORM_FIELDS + ("user_specialty_id", "user_subspecialty_id")

_DENY = SuggestionFilter(deny_all=True)


def _scoped_on(column: str, attr: str):
    def build(profile: UserProfile) -> SuggestionFilter:
        value = getattr(profile, attr)
        if value is None:
            return _DENY
        return SuggestionFilter(column=column, value=value)

    return build


CAPABILITIES = {
    Role.SUPER_ADMIN: lambda profile: SuggestionFilter(),
    Role.SPECIALTY_ADMIN: _scoped_on("user_specialty_id", "specialty_id"),
    Role.SUBSPECIALTY_ADMIN: _scoped_on("user_subspecialty_id", "subspecialty_id"),
    Role.USER: lambda profile: _DENY,
}


def suggestion_filter_for(profile: UserProfile) -> SuggestionFilter:
    return CAPABILITIES.get(profile.role, CAPABILITIES[Role.USER])(profile)


def can_moderate(profile: UserProfile, suggestion: Suggestion) -> bool:
    return suggestion_filter_for(profile).matches(suggestion)


@dataclass(frozen=True)
class PendingSuggestionsView:
    items: tuple[Suggestion, ...]
    pending_count: int

    def to_dict(self) -> dict:
        return {
            "items": [s.to_dict() for s in self.items],
            "pending_count": self.pending_count,
        }


def list_pending(store, profile: UserProfile) -> PendingSuggestionsView:
    items = tuple(store.list_pending_suggestions(suggestion_filter_for(profile)))
    return PendingSuggestionsView(items=items, pending_count=len(items))


def _load_for_review(store, profile: UserProfile, suggestion_id: int) -> Suggestion:
    if not profile.role.is_admin:
        raise ModerationForbidden("Admin access required.")
    suggestion = store.get_suggestion(suggestion_id)
    if suggestion is None:
        raise RecordNotFound(f"Suggestion {suggestion_id} not found.")
    if not can_moderate(profile, suggestion):
        raise ModerationForbidden("This suggestion is outside your specialty.")
    if suggestion.status.is_terminal:
        raise SuggestionTransitionConflict(
            f"Suggestion {suggestion_id} was already {suggestion.status.value}."
        )
    return suggestion


# =============================================================================
# TRANSITIONS
# =============================================================================

def approve(store, profile: UserProfile, suggestion_id: int, now: Optional[datetime] = None) -> Resource:
    suggestion = _load_for_review(store, profile, suggestion_id)

    fields = {name: getattr(suggestion, name) for name in APPROVABLE_FIELDS}
    fields["curated_by"] = profile.id
    try:
        resource = store.create_resource(fields)
    except StoreError as e:
        logger.warning(
            "[MODERATION] resource for suggestion %s not created, left pending: %s", suggestion_id, e.message
        )
        raise ResourceCreationFailure(
            "The resource could not be created. The suggestion is still pending, please retry."
        ) from e

    reviewed_at = now or datetime.utcnow()
    try:
        flipped = store.update_suggestion_status(
            suggestion_id, SuggestionStatus.APPROVED, profile.id, reviewed_at
        )
    except StoreError:
        _discard_resource(store, resource)
        raise

    if not flipped:
        _discard_resource(store, resource)
        logger.warning("[MODERATION] suggestion %s approved concurrently by someone else", suggestion_id)
        raise SuggestionTransitionConflict(f"Suggestion {suggestion_id} was already reviewed.")

    record_admin_action(
        store,
        profile.id,
        ACTION_SUGGESTION_APPROVED,
        ENTITY_SUGGESTION,
        suggestion_id,
        {"resource_id": resource.id, "title": suggestion.title},
        now=reviewed_at,
    )
    logger.info("[MODERATION] suggestion %s approved by %s -> resource %s", suggestion_id, profile.id, resource.id)
    return resource


def _discard_resource(store, resource: Resource) -> None:
    try:
        store.delete_resource(resource.id)
    except StoreError as e:
        logger.warning("[MODERATION] orphan resource %s could not be removed: %s", resource.id, e.message)


def reject(store, profile: UserProfile, suggestion_id: int, now: Optional[datetime] = None) -> Suggestion:
    suggestion = _load_for_review(store, profile, suggestion_id)

    reviewed_at = now or datetime.utcnow()
    if not store.update_suggestion_status(suggestion_id, SuggestionStatus.REJECTED, profile.id, reviewed_at):
        logger.warning("[MODERATION] suggestion %s reviewed concurrently, reject skipped", suggestion_id)
        raise SuggestionTransitionConflict(f"Suggestion {suggestion_id} was already reviewed.")

    record_admin_action(
        store,
        profile.id,
        ACTION_SUGGESTION_REJECTED,
        ENTITY_SUGGESTION,
        suggestion_id,
        {"title": suggestion.title},
        now=reviewed_at,
    )
    logger.info("[MODERATION] suggestion %s rejected by %s", suggestion_id, profile.id)
    return store.get_suggestion(suggestion_id)


# =============================================================================
# SUBMIT / EDIT
# =============================================================================

def submit_suggestion(store, profile: UserProfile, data: Mapping) -> Suggestion:
    """Any signed-in user may suggest a resource; it lands pending."""
    fields = clean_fields(data, SUGGESTION_FORM_FIELDS)
    check_links(store, fields)

    scoping = clean_fields(data, ("user_specialty_id", "user_subspecialty_id"), partial=True)
    specialty_id = scoping.get("user_specialty_id")
    subspecialty_id = scoping.get("user_subspecialty_id")
    fields["user_specialty_id"] = specialty_id if specialty_id is not None else profile.specialty_id
    fields["user_subspecialty_id"] = subspecialty_id if subspecialty_id is not None else profile.subspecialty_id
    fields["suggested_by"] = profile.id

    suggestion = store.create_suggestion(fields)
    logger.info("[SUGGESTION] %s submitted by %s", suggestion.id, profile.id)
    return suggestion


def update_suggestion(store, profile: UserProfile, suggestion_id: int, data: Mapping) -> Suggestion:
    _load_for_review(store, profile, suggestion_id)
    fields = clean_fields(data, EDITABLE_SUGGESTION_FIELDS, partial=True)
    check_links(store, fields)

    suggestion = store.update_suggestion(suggestion_id, fields)
    if suggestion is None:
        raise RecordNotFound(f"Suggestion {suggestion_id} not found.")
    record_admin_action(
        store,
        profile.id,
        ACTION_SUGGESTION_UPDATED,
        ENTITY_SUGGESTION,
        suggestion_id,
        {"fields": sorted(fields)},
    )
    logger.info("[MODERATION] suggestion %s edited by %s", suggestion_id, profile.id)
    return suggestion
