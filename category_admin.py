# category_admin.py - admin category management (add / rename / delete / reorder)
#
# Writes keep the tree two levels deep: a top-level category has no parent and
# depth 0; a subcategory has depth 1, a top-level parent and the parent's
# subspecialty. Deleting a category takes its subcategories with it.
import logging
from typing import Iterable, Mapping, Optional

from category_tree import CategoryTree, build_category_tree
from errors import InvalidInput, InvalidResourceLink, ModerationForbidden, RecordNotFound
from records import Category, Role, UserProfile
from resource_admin import (
    ACTION_CATEGORIES_REORDERED,
    ACTION_CATEGORY_CREATED,
    ACTION_CATEGORY_DELETED,
    ACTION_CATEGORY_RENAMED,
    ENTITY_CATEGORY,
    clean_fields,
    record_admin_action,
)

logger = logging.getLogger(__name__)


# ======================
# Who may manage what
# ======================
def _owns_specialty(store, profile: UserProfile, subspecialty_id: int) -> bool:
    if profile.specialty_id is None:
        return False
    sub = store.get_subspecialty(subspecialty_id)
    return sub is not None and sub.specialty_id == profile.specialty_id


MANAGE_RULES = {
    Role.SUPER_ADMIN: lambda store, profile, sub_id: True,
    Role.SPECIALTY_ADMIN: _owns_specialty,
    Role.SUBSPECIALTY_ADMIN: lambda store, profile, sub_id: (
        profile.subspecialty_id is not None and profile.subspecialty_id == sub_id
    ),
    Role.USER: lambda store, profile, sub_id: False,
}


def can_manage(store, profile: UserProfile, subspecialty_id: int) -> bool:
    rule = MANAGE_RULES.get(profile.role, MANAGE_RULES[Role.USER])
    return rule(store, profile, subspecialty_id)


def _require_manage(store, profile: UserProfile, subspecialty_id: int) -> None:
    if not profile.role.is_admin:
        raise ModerationForbidden("Admin access required.")
    if not can_manage(store, profile, subspecialty_id):
        raise ModerationForbidden("These categories are outside your specialty.")


def _existing(store, category_id: int) -> Category:
    category = store.get_category(category_id)
    if category is None:
        raise RecordNotFound(f"Category {category_id} not found.")
    return category


def _required_name(data: Mapping) -> str:
    name = clean_fields(data, ("name",))["name"]
    if not name:
        raise InvalidInput("A category name is required.")
    return name


# ======================
# Operations
# ======================
def list_managed_categories(store, profile: UserProfile, subspecialty_id: Optional[int] = None) -> CategoryTree:
    sub_id = subspecialty_id if subspecialty_id is not None else profile.subspecialty_id
    if sub_id is None:
        raise InvalidInput("Pick a subspecialty to manage.")
    if store.get_subspecialty(sub_id) is None:
        raise RecordNotFound(f"Subspecialty {sub_id} not found.")
    _require_manage(store, profile, sub_id)
    return build_category_tree(store.list_categories(subspecialty_ids=[sub_id]))


def create_category(store, profile: UserProfile, data: Mapping) -> Category:
    name = _required_name(data)
    links = clean_fields(data, ("subspecialty_id", "parent_category_id"))
    parent_id = links["parent_category_id"]

    if parent_id is not None:
        parent = store.get_category(parent_id)
        if parent is None:
            raise InvalidResourceLink(f"Category {parent_id} does not exist.")
        if not parent.is_top_level or parent.depth != 0:
            raise InvalidInput("Subcategories cannot have subcategories of their own.")
        if links["subspecialty_id"] is not None and links["subspecialty_id"] != parent.subspecialty_id:
            raise InvalidInput("A subcategory belongs to its parent's subspecialty.")
        sub_id, depth = parent.subspecialty_id, 1
    else:
        sub_id = links["subspecialty_id"] if links["subspecialty_id"] is not None else profile.subspecialty_id
        if sub_id is None:
            raise InvalidInput("A subspecialty is required.")
        if store.get_subspecialty(sub_id) is None:
            raise InvalidResourceLink(f"Subspecialty {sub_id} does not exist.")
        depth = 0

    _require_manage(store, profile, sub_id)

    siblings = [c for c in store.list_categories(subspecialty_ids=[sub_id]) if c.parent_category_id == parent_id]
    category = store.create_category({
        "name": name,
        "subspecialty_id": sub_id,
        "parent_category_id": parent_id,
        "depth": depth,
        "order": max((c.order for c in siblings), default=0) + 1,
    })
    record_admin_action(
        store,
        profile.id,
        ACTION_CATEGORY_CREATED,
        ENTITY_CATEGORY,
        category.id,
        {"name": name, "parent_category_id": parent_id, "subspecialty_id": sub_id},
    )
    logger.info("[CATEGORY] %s (%s) created by %s", category.id, name, profile.id)
    return category


def rename_category(store, profile: UserProfile, category_id: int, data: Mapping) -> Category:
    existing = _existing(store, category_id)
    _require_manage(store, profile, existing.subspecialty_id)
    name = _required_name(data)

    category = store.update_category(category_id, {"name": name})
    if category is None:
        raise RecordNotFound(f"Category {category_id} not found.")
    record_admin_action(
        store, profile.id, ACTION_CATEGORY_RENAMED, ENTITY_CATEGORY, category_id, {"from": existing.name, "to": name}
    )
    return category


def delete_category(store, profile: UserProfile, category_id: int) -> tuple[int, ...]:
    """Delete a category and its subcategories; returns every deleted id."""
    existing = _existing(store, category_id)
    _require_manage(store, profile, existing.subspecialty_id)

    deleted = tuple(store.delete_category(category_id))
    if not deleted:
        raise RecordNotFound(f"Category {category_id} not found.")
    record_admin_action(
        store,
        profile.id,
        ACTION_CATEGORY_DELETED,
        ENTITY_CATEGORY,
        category_id,
        {"name": existing.name, "deleted_ids": list(deleted)},
    )
    logger.info("[CATEGORY] %s deleted by %s (with %d subcategories)", category_id, profile.id, len(deleted) - 1)
    return deleted


def reorder_categories(store, profile: UserProfile, ordered_ids: Iterable) -> list[Category]:
    """Give sibling categories the order 1..n following ``ordered_ids``."""
    if not isinstance(ordered_ids, (list, tuple)):
        raise InvalidInput("List the categories to reorder.")
    ids = [clean_fields({"category_id": raw}, ("category_id",))["category_id"] for raw in ordered_ids]
    if not ids or None in ids:
        raise InvalidInput("List the categories to reorder.")
    if len(set(ids)) != len(ids):
        raise InvalidInput("A category can only appear once in the new order.")

    categories = [_existing(store, cid) for cid in ids]
    first = categories[0]
    if any(
        (c.parent_category_id, c.subspecialty_id) != (first.parent_category_id, first.subspecialty_id)
        for c in categories
    ):
        raise InvalidInput("Only categories sharing a parent can be reordered together.")
    _require_manage(store, profile, first.subspecialty_id)

    store.set_category_order({cid: position for position, cid in enumerate(ids, start=1)})
    record_admin_action(
        store,
        profile.id,
        ACTION_CATEGORIES_REORDERED,
        ENTITY_CATEGORY,
        first.parent_category_id,
        {"subspecialty_id": first.subspecialty_id, "order": ids},
    )
    return [store.get_category(cid) for cid in ids]
