# resource_scope.py - restrict resources to a category allow-set
from typing import Iterable, Mapping, Optional

from records import Procedure, Resource, ScopeKind


def procedure_category_map(procedures: Iterable[Procedure]) -> dict[int, int]:
    return {p.id: p.category_id for p in procedures}


def in_allow_set(
    resource: Resource,
    allowed: frozenset[int],
    procedure_categories: Mapping[int, int],
) -> bool:
    """True when the resource's category, or its procedure's category, is allowed."""
    if resource.category_id is not None and resource.category_id in allowed:
        return True
    if resource.procedure_id is not None:
        cat_id = procedure_categories.get(resource.procedure_id)
        return cat_id is not None and cat_id in allowed
    return False


def filter_by_scope(
    resources: Iterable[Resource],
    scope_kind: ScopeKind,
    allowed: frozenset[int],
    procedures: Iterable[Procedure],
    procedure_categories: Optional[Mapping[int, int]] = None,
) -> list[Resource]:
    resources = list(resources)
    if scope_kind is ScopeKind.ALL_CATEGORIES:
        return resources
    if procedure_categories is None:
        procedure_categories = procedure_category_map(procedures)
    return [r for r in resources if in_allow_set(r, allowed, procedure_categories)]
