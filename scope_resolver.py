"""Resolve which categories a viewer may browse.

The resolver turns a ``UserProfile`` (and an optional "browse another
subspecialty" override) into a ``ScopeDescriptor``. Special cases are driven by
the ``SpecialtyMarker`` tags attached to taxonomy records when they are loaded,
never by comparing names here.

Lookups that fail never reach the caller: the scope degrades to every category
and the descriptor says why.
"""

import itertools
import logging
import threading
from collections import OrderedDict
from dataclasses import dataclass
from typing import Optional

from errors import ScopeResolutionFailure, StoreError
from records import Category, Procedure, ScopeKind, Subspecialty, UserProfile
from taxonomy_markers import SpecialtyMarker

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScopeDescriptor:
    kind: ScopeKind
    specialty_id: Optional[int] = None
    subspecialty_id: Optional[int] = None
    degraded: bool = False
    reason: Optional[str] = None

    @classmethod
    def all_categories(cls, reason: Optional[str] = None, degraded: bool = False):
        return cls(kind=ScopeKind.ALL_CATEGORIES, degraded=degraded, reason=reason)

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "specialty_id": self.specialty_id,
            "subspecialty_id": self.subspecialty_id,
            "degraded": self.degraded,
            "reason": self.reason,
        }


# =============================================================================
# RESOLUTION
# =============================================================================

def _scope_for_subspecialty(store, sub: Subspecialty) -> ScopeDescriptor:
    if sub.marker is not SpecialtyMarker.GENERALIST:
        return ScopeDescriptor(
            kind=ScopeKind.UNDER_SUBSPECIALTY,
            specialty_id=sub.specialty_id,
            subspecialty_id=sub.id,
        )

    owner = store.get_specialty(sub.specialty_id)
    if owner is None:
        raise ScopeResolutionFailure(
            f"Specialty {sub.specialty_id} owning generalist subspecialty {sub.id} not found."
        )
    if owner.marker is SpecialtyMarker.ORTHOPAEDIC_SURGERY:
        return ScopeDescriptor(kind=ScopeKind.ALL_UNDER_SPECIALTY, specialty_id=owner.id)
    return ScopeDescriptor.all_categories(reason="generalist")


def _borrowed_subspecialty(store) -> Subspecialty:
    ortho = store.find_specialty(SpecialtyMarker.ORTHOPAEDIC_SURGERY)
    if ortho is None:
        raise ScopeResolutionFailure("Orthopaedic Surgery specialty not found.")
    sub = store.find_subspecialty(ortho.id, SpecialtyMarker.FOOT_AND_ANKLE)
    if sub is None:
        raise ScopeResolutionFailure("Foot and Ankle subspecialty not found.")
    return sub


def _resolve(store, profile: UserProfile, override_subspecialty_id: Optional[int]) -> ScopeDescriptor:
    sub_id = override_subspecialty_id if override_subspecialty_id is not None else profile.subspecialty_id

    if sub_id is not None:
        sub = store.get_subspecialty(sub_id)
        if sub is None:
            raise ScopeResolutionFailure(f"Subspecialty {sub_id} not found.")
        return _scope_for_subspecialty(store, sub)

    if profile.specialty_id is None:
        return ScopeDescriptor.all_categories(reason="no specialty on profile")

    specialty = store.get_specialty(profile.specialty_id)
    if specialty is None:
        raise ScopeResolutionFailure(f"Specialty {profile.specialty_id} not found.")

    if specialty.marker is SpecialtyMarker.NO_SUBSPECIALTY_DATA:
        return _scope_for_subspecialty(store, _borrowed_subspecialty(store))

    return ScopeDescriptor.all_categories(reason="specialty without subspecialty")


def resolve_scope(
    store, profile: UserProfile, override_subspecialty_id: Optional[int] = None
) -> ScopeDescriptor:
    try:
        return _resolve(store, profile, override_subspecialty_id)
    except (ScopeResolutionFailure, StoreError) as e:
        logger.warning(
            "[SCOPE] user=%s override=%s degraded to all categories: %s",
            profile.id,
            override_subspecialty_id,
            e.message,
        )
        return ScopeDescriptor.all_categories(reason=e.message, degraded=True)


# =============================================================================
# LOADING
# =============================================================================

def load_scope_categories(store, scope: ScopeDescriptor) -> tuple[list[Category], list[Procedure]]:
    """Categories of the scope, then the procedures that hang off them."""
    if scope.kind is ScopeKind.ALL_CATEGORIES:
        categories = store.list_categories()
        procedures = store.list_procedures()
        return categories, procedures

    if scope.kind is ScopeKind.ALL_UNDER_SPECIALTY:
        sub_ids = [s.id for s in store.list_subspecialties(scope.specialty_id)]
    else:
        sub_ids = [scope.subspecialty_id]

    categories = store.list_categories(subspecialty_ids=sub_ids) if sub_ids else []
    procedures = store.list_procedures(category_ids=[c.id for c in categories]) if categories else []
    return categories, procedures


def list_browsable_subspecialties(store, profile: UserProfile) -> list[Subspecialty]:
    """Subspecialties offered in the browse-override dropdown, ordered by name.

    Viewers whose specialty has no subspecialty data browse the specialty they
    borrow from; viewers without a specialty see every subspecialty.
    """
    specialty_id = profile.specialty_id
    try:
        if specialty_id is not None:
            specialty = store.get_specialty(specialty_id)
            if specialty is not None and specialty.marker is SpecialtyMarker.NO_SUBSPECIALTY_DATA:
                specialty_id = _borrowed_subspecialty(store).specialty_id
        subs = store.list_subspecialties(specialty_id)
    except (ScopeResolutionFailure, StoreError) as e:
        logger.warning("[SCOPE] no browsable subspecialties for user=%s: %s", profile.id, e.message)
        return []
    return sorted(subs, key=lambda s: (s.name.lower(), s.id))


# =============================================================================
# LATEST-REQUEST-WINS
# =============================================================================

class ScopeRequestGate:
    """Hands out increasing tokens per viewer; only the newest token may commit.

    Only tokens are kept, never results. Viewers are evicted least recently
    used first once ``max_viewers`` is reached; an evicted viewer's in-flight
    request then counts as superseded.
    """

    def __init__(self, max_viewers: int = 10000):
        self.max_viewers = max_viewers
        self._lock = threading.Lock()
        self._counter = itertools.count(1)
        self._issued: OrderedDict = OrderedDict()

    def __len__(self):
        with self._lock:
            return len(self._issued)

    def issue(self, viewer_id) -> int:
        with self._lock:
            token = next(self._counter)
            self._issued[viewer_id] = token
            self._issued.move_to_end(viewer_id)
            while len(self._issued) > self.max_viewers:
                self._issued.popitem(last=False)
            return token

    def is_current(self, viewer_id, token: int) -> bool:
        with self._lock:
            return self._issued.get(viewer_id) == token

    def commit(self, viewer_id, token: int) -> bool:
        """True when ``token`` is still the viewer's latest; a stale one is logged and refused."""
        with self._lock:
            latest = self._issued.get(viewer_id)
        if latest != token:
            logger.warning(
                "[SCOPE] stale resolution for viewer=%s discarded (token %s, latest %s)",
                viewer_id,
                token,
                latest,
            )
            return False
        return True

    def forget(self, viewer_id) -> None:
        with self._lock:
            self._issued.pop(viewer_id, None)
