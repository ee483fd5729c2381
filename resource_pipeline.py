# resource_pipeline.py - filter, rank and paginate the resources a viewer sees
#
# resolve(state, snapshot) is pure: the same FilterState over the same snapshot
# always yields the same ResolvedView. Stages run in a fixed order:
#   scope -> favorites-only -> category -> search -> rank -> paginate
import logging
import math
from dataclasses import dataclass, field, fields, replace
from typing import Iterable, Mapping, Optional

from category_tree import CategoryTree, build_category_tree, validate_selection
from errors import InvalidSelection
from records import Category, Procedure, Resource, ScopeKind, UserProfile
from resource_scope import filter_by_scope, in_allow_set, procedure_category_map
from scope_resolver import ScopeDescriptor, load_scope_categories, resolve_scope

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 10


# ======================
# Filter state
# ======================
@dataclass(frozen=True)
class FilterState:
    browse_subspecialty_id: Optional[int] = None
    category_id: Optional[int] = None
    search: str = ""
    favorites_only: bool = False
    page: int = 1

    def changed(self, **updates) -> "FilterState":
        """Copy with ``updates`` applied; any filter change sends the viewer back to page 1."""
        new = replace(self, **updates)
        filter_changed = any(
            getattr(new, f.name) != getattr(self, f.name) for f in fields(self) if f.name != "page"
        )
        if filter_changed:
            new = replace(new, page=1)
        return new

    def to_dict(self) -> dict:
        return {f.name: getattr(self, f.name) for f in fields(self)}

    @classmethod
    def from_mapping(cls, data: Optional[Mapping]) -> "FilterState":
        data = data or {}
        try:
            page = max(1, int(data.get("page") or 1))
        except (TypeError, ValueError):
            page = 1
        return cls(
            browse_subspecialty_id=data.get("browse_subspecialty_id"),
            category_id=data.get("category_id"),
            search=(data.get("search") or "").strip(),
            favorites_only=bool(data.get("favorites_only")),
            page=page,
        )


def _same_filters(a: FilterState, b: FilterState) -> bool:
    return all(getattr(a, f.name) == getattr(b, f.name) for f in fields(a) if f.name != "page")


# ======================
# Stages
# ======================
def only_favorites(resources: Iterable[Resource], favorite_ids: frozenset, enabled: bool) -> list[Resource]:
    if not enabled:
        return list(resources)
    return [r for r in resources if r.id in favorite_ids]


def narrow_to_category(
    resources: Iterable[Resource],
    tree: CategoryTree,
    category_id: Optional[int],
    procedure_categories: Mapping[int, int],
) -> list[Resource]:
    if category_id is None:
        return list(resources)
    wanted = tree.expand(category_id)
    return [r for r in resources if in_allow_set(r, wanted, procedure_categories)]


def search_resources(resources: Iterable[Resource], query: Optional[str]) -> list[Resource]:
    q = (query or "").strip().lower()
    if not q:
        return list(resources)
    out = []
    for r in resources:
        haystacks = (r.title or "", r.description or "", r.keywords or "")
        if any(q in h.lower() for h in haystacks):
            out.append(r)
    return out


def rank_resources(resources: Iterable[Resource], favorite_ids: frozenset) -> list[Resource]:
    # sorted() is stable, so equal keys keep store order (newest first)
    return sorted(resources, key=lambda r: (not r.is_sponsored, r.id not in favorite_ids))


# ======================
# Pagination
# ======================
@dataclass(frozen=True)
class Page:
    items: tuple
    page: int
    total_pages: int
    total_count: int
    page_size: int


def paginate(items, page: int, page_size: int = DEFAULT_PAGE_SIZE) -> Page:
    items = list(items)
    if page_size < 1:
        page_size = DEFAULT_PAGE_SIZE
    total_pages = max(1, math.ceil(len(items) / page_size))
    page = min(max(1, page or 1), total_pages)
    start = (page - 1) * page_size
    return Page(
        items=tuple(items[start : start + page_size]),
        page=page,
        total_pages=total_pages,
        total_count=len(items),
        page_size=page_size,
    )


# ======================
# Snapshot & view
# ======================
@dataclass(frozen=True)
class LibrarySnapshot:
    scope: ScopeDescriptor
    categories: tuple[Category, ...] = ()
    procedures: tuple[Procedure, ...] = ()
    resources: tuple[Resource, ...] = ()
    favorite_ids: frozenset = field(default_factory=frozenset)
    # a newer load for the same viewer was issued while this one ran
    superseded: bool = False


@dataclass(frozen=True)
class ResolvedView:
    category_tree: CategoryTree
    scope: ScopeDescriptor
    paged_resources: tuple[Resource, ...]
    total_count: int
    page: int
    total_pages: int
    state: FilterState
    message: Optional[str] = None

    @property
    def scope_kind(self) -> ScopeKind:
        return self.scope.kind

    def to_dict(self, favorite_ids: frozenset = frozenset()) -> dict:
        return {
            "scope": self.scope.to_dict(),
            "categories": self.category_tree.to_list(),
            "resources": [
                {**r.to_dict(), "is_favorite": r.id in favorite_ids} for r in self.paged_resources
            ],
            "total_count": self.total_count,
            "page": self.page,
            "total_pages": self.total_pages,
            "filters": self.state.to_dict(),
            "message": self.message,
        }


def load_snapshot(store, profile: UserProfile, override_subspecialty_id=None, gate=None) -> LibrarySnapshot:
    """Read everything one pipeline run needs.

    With a gate, a load overtaken by a newer one for the same viewer comes back
    flagged ``superseded``; callers discard it instead of applying it.
    """
    token = gate.issue(profile.id) if gate is not None else None

    scope = resolve_scope(store, profile, override_subspecialty_id)
    categories, procedures = load_scope_categories(store, scope)
    snapshot = LibrarySnapshot(
        scope=scope,
        categories=tuple(categories),
        procedures=tuple(procedures),
        resources=tuple(store.list_resources()),
        favorite_ids=frozenset(store.list_favorite_ids(profile.id)),
    )

    if gate is not None and not gate.commit(profile.id, token):
        return replace(snapshot, superseded=True)
    return snapshot


def resolve(
    state: FilterState,
    snapshot: LibrarySnapshot,
    page_size: int = DEFAULT_PAGE_SIZE,
    previous: Optional[FilterState] = None,
) -> ResolvedView:
    tree = build_category_tree(snapshot.categories)
    proc_map = procedure_category_map(snapshot.procedures)

    message = None
    try:
        validate_selection(tree, state.category_id)
    except InvalidSelection as e:
        message = e.message
        fallback = previous.category_id if previous is not None else None
        if fallback is not None and not tree.contains(fallback):
            fallback = None
        logger.info("[PIPELINE] category %s ignored, keeping %s", state.category_id, fallback)
        state = replace(state, category_id=fallback)
        # nothing else changed: the previous state stands, page included
        if previous is not None and _same_filters(state, previous):
            state = replace(state, page=previous.page)

    scoped = filter_by_scope(
        snapshot.resources, snapshot.scope.kind, tree.allowed_ids(), snapshot.procedures, proc_map
    )
    items = only_favorites(scoped, snapshot.favorite_ids, state.favorites_only)
    items = narrow_to_category(items, tree, state.category_id, proc_map)
    items = search_resources(items, state.search)
    items = rank_resources(items, snapshot.favorite_ids)

    page = paginate(items, state.page, page_size)
    if page.page != state.page:
        state = replace(state, page=page.page)

    return ResolvedView(
        category_tree=tree,
        scope=snapshot.scope,
        paged_resources=page.items,
        total_count=page.total_count,
        page=page.page,
        total_pages=page.total_pages,
        state=state,
        message=message,
    )
