"""Pytest fixtures for the resource library tests."""

import itertools
from dataclasses import replace
from datetime import datetime, timedelta

import pytest

from datastore import DataStore
from errors import StoreError
from records import (
    Category,
    Procedure,
    Resource,
    Role,
    Specialty,
    Subspecialty,
    Suggestion,
    SuggestionStatus,
    UserProfile,
)
from taxonomy_markers import classify_specialty, classify_subspecialty

BASE_TIME = datetime(2024, 1, 1, 12, 0, 0)


def specialty(id, name, order=0):
    return Specialty(id=id, name=name, order=order, marker=classify_specialty(name))


def subspecialty(id, name, specialty_id, order=0):
    return Subspecialty(
        id=id, name=name, specialty_id=specialty_id, order=order, marker=classify_subspecialty(name)
    )


class FakeStore(DataStore):
    """In-memory DataStore. Put a method name in ``fail_on`` to make it raise StoreError."""

    def __init__(
        self,
        specialties=(),
        subspecialties=(),
        categories=(),
        procedures=(),
        resources=(),
        suggestions=(),
    ):
        self.specialties = {s.id: s for s in specialties}
        self.subspecialties = {s.id: s for s in subspecialties}
        self.categories = {c.id: c for c in categories}
        self.procedures = {p.id: p for p in procedures}
        self.resources = {r.id: r for r in resources}
        self.suggestions = {s.id: s for s in suggestions}
        self.favorites = set()
        self.audit = []
        self.fail_on = set()
        self.calls = []
        # called right before the compare-and-set, to simulate a concurrent reviewer
        self.before_status_update = None
        self._ids = itertools.count(9000)
        self._clock = itertools.count(1000)

    def _op(self, name):
        self.calls.append(name)
        if name in self.fail_on:
            raise StoreError(f"{name} unavailable")

    def _now(self):
        return BASE_TIME + timedelta(minutes=next(self._clock))

    # --- taxonomy ---
    def list_specialties(self):
        self._op("list_specialties")
        return sorted(self.specialties.values(), key=lambda s: (s.order, s.id))

    def list_subspecialties(self, specialty_id=None):
        self._op("list_subspecialties")
        subs = [s for s in self.subspecialties.values() if specialty_id is None or s.specialty_id == specialty_id]
        return sorted(subs, key=lambda s: (s.order, s.id))

    def list_categories(self, subspecialty_ids=None):
        self._op("list_categories")
        cats = [
            c for c in self.categories.values()
            if subspecialty_ids is None or c.subspecialty_id in set(subspecialty_ids)
        ]
        return sorted(cats, key=lambda c: (c.order, c.id))

    def list_procedures(self, category_ids=None):
        self._op("list_procedures")
        procs = [
            p for p in self.procedures.values()
            if category_ids is None or p.category_id in set(category_ids)
        ]
        return sorted(procs, key=lambda p: (p.name, p.id))

    def get_specialty(self, specialty_id):
        self._op("get_specialty")
        return self.specialties.get(specialty_id)

    def get_subspecialty(self, subspecialty_id):
        self._op("get_subspecialty")
        return self.subspecialties.get(subspecialty_id)

    def get_category(self, category_id):
        self._op("get_category")
        return self.categories.get(category_id)

    def get_procedure(self, procedure_id):
        self._op("get_procedure")
        return self.procedures.get(procedure_id)

    # --- category management ---
    def create_category(self, fields):
        self._op("create_category")
        known = {k: v for k, v in fields.items() if k in Category.__dataclass_fields__}
        category = Category(id=next(self._ids), **known)
        self.categories[category.id] = category
        return category

    def update_category(self, category_id, fields):
        self._op("update_category")
        current = self.categories.get(category_id)
        if current is None:
            return None
        known = {k: v for k, v in fields.items() if k in Category.__dataclass_fields__}
        self.categories[category_id] = replace(current, **known)
        return self.categories[category_id]

    def delete_category(self, category_id):
        self._op("delete_category")
        if category_id not in self.categories:
            return ()
        ids = (category_id, *(c.id for c in self.categories.values() if c.parent_category_id == category_id))
        gone_procs = {p.id for p in self.procedures.values() if p.category_id in ids}
        for pid in gone_procs:
            del self.procedures[pid]
        for rid, r in list(self.resources.items()):
            if r.category_id in ids:
                self.resources[rid] = replace(r, category_id=None)
            elif r.procedure_id in gone_procs:
                self.resources[rid] = replace(r, procedure_id=None)
        for cid in ids:
            del self.categories[cid]
        return ids

    def set_category_order(self, orders):
        self._op("set_category_order")
        for category_id, order in orders.items():
            self.categories[category_id] = replace(self.categories[category_id], order=order)

    # --- resources ---
    def list_resources(self):
        self._op("list_resources")
        return sorted(
            self.resources.values(),
            key=lambda r: (r.created_at or BASE_TIME, r.id),
            reverse=True,
        )

    def get_resource(self, resource_id):
        self._op("get_resource")
        return self.resources.get(resource_id)

    def create_resource(self, fields):
        self._op("create_resource")
        known = {k: v for k, v in fields.items() if k in Resource.__dataclass_fields__}
        resource = Resource(id=next(self._ids), created_at=self._now(), **known)
        self.resources[resource.id] = resource
        return resource

    def update_resource(self, resource_id, fields):
        self._op("update_resource")
        current = self.resources.get(resource_id)
        if current is None:
            return None
        known = {k: v for k, v in fields.items() if k in Resource.__dataclass_fields__}
        self.resources[resource_id] = replace(current, **known)
        return self.resources[resource_id]

    def delete_resource(self, resource_id):
        self._op("delete_resource")
        if self.resources.pop(resource_id, None) is None:
            return False
        self.favorites = {(u, r) for (u, r) in self.favorites if r != resource_id}
        return True

    # --- suggestions ---
    def list_pending_suggestions(self, scope_filter):
        self._op("list_pending_suggestions")
        items = [
            s for s in self.suggestions.values()
            if s.status is SuggestionStatus.PENDING and scope_filter.matches(s)
        ]
        return sorted(items, key=lambda s: (s.created_at or BASE_TIME, s.id), reverse=True)

    def get_suggestion(self, suggestion_id):
        self._op("get_suggestion")
        return self.suggestions.get(suggestion_id)

    def create_suggestion(self, fields):
        self._op("create_suggestion")
        known = {k: v for k, v in fields.items() if k in Suggestion.__dataclass_fields__}
        suggestion = Suggestion(id=next(self._ids), created_at=self._now(), **known)
        self.suggestions[suggestion.id] = suggestion
        return suggestion

    def update_suggestion(self, suggestion_id, fields):
        self._op("update_suggestion")
        current = self.suggestions.get(suggestion_id)
        if current is None:
            return None
        known = {k: v for k, v in fields.items() if k in Suggestion.__dataclass_fields__}
        self.suggestions[suggestion_id] = replace(current, **known)
        return self.suggestions[suggestion_id]

    def update_suggestion_status(
        self, suggestion_id, status, reviewer_id, reviewed_at, expected_status=SuggestionStatus.PENDING
    ):
        self._op("update_suggestion_status")
        if self.before_status_update is not None:
            self.before_status_update(self, suggestion_id)
        current = self.suggestions.get(suggestion_id)
        if current is None or current.status is not expected_status:
            return False
        self.suggestions[suggestion_id] = replace(
            current, status=status, reviewed_by=reviewer_id, reviewed_at=reviewed_at
        )
        return True

    # --- favorites & audit ---
    def list_favorite_ids(self, user_id):
        self._op("list_favorite_ids")
        return frozenset(r for (u, r) in self.favorites if u == user_id)

    def toggle_favorite(self, user_id, resource_id):
        self._op("toggle_favorite")
        key = (user_id, resource_id)
        if key in self.favorites:
            self.favorites.discard(key)
            return False
        self.favorites.add(key)
        return True

    def append_audit_log(self, entry):
        self._op("append_audit_log")
        self.audit.append(entry)


# =============================================================================
# ENGINE FIXTURES
# =============================================================================

ORTHO, PODIATRY, NEURO, DERM = 1, 2, 3, 4
ORTHO_GENERALIST, FOOT_ANKLE, SPORTS = 10, 11, 12
NEURO_GENERALIST, SPINE = 20, 21
BUNION, MIS_BUNION, ANKLE_ARTHRITIS, KNEE_LIGAMENTS, LUMBAR = 100, 101, 102, 110, 120
CHEVRON, MENISCAL_REPAIR, MICRODISCECTOMY = 500, 501, 502


@pytest.fixture
def taxonomy():
    """Orthopaedics (generalist, foot & ankle, sports), Podiatry, Neurosurgery, Dermatology."""
    return {
        "specialties": [
            specialty(ORTHO, "Orthopaedic Surgery", 1),
            specialty(PODIATRY, "Podiatry", 2),
            specialty(NEURO, "Neurosurgery", 3),
            specialty(DERM, "Dermatology", 4),
        ],
        "subspecialties": [
            subspecialty(ORTHO_GENERALIST, "Generalist", ORTHO, 0),
            subspecialty(FOOT_ANKLE, "Foot and Ankle", ORTHO, 1),
            subspecialty(SPORTS, "Sports Medicine", ORTHO, 2),
            subspecialty(NEURO_GENERALIST, "Generalist", NEURO, 0),
            subspecialty(SPINE, "Spine", NEURO, 1),
        ],
        "categories": [
            Category(id=BUNION, name="Bunion", subspecialty_id=FOOT_ANKLE, order=1),
            Category(
                id=MIS_BUNION,
                name="Minimally Invasive Bunion",
                subspecialty_id=FOOT_ANKLE,
                order=1,
                depth=1,
                parent_category_id=BUNION,
            ),
            Category(id=ANKLE_ARTHRITIS, name="Ankle Arthritis", subspecialty_id=FOOT_ANKLE, order=2),
            Category(id=KNEE_LIGAMENTS, name="Knee Ligaments", subspecialty_id=SPORTS, order=1),
            Category(id=LUMBAR, name="Lumbar Spine", subspecialty_id=SPINE, order=1),
        ],
        "procedures": [
            Procedure(id=CHEVRON, name="Chevron Osteotomy", category_id=BUNION, key_terms=("chevron",)),
            Procedure(id=MENISCAL_REPAIR, name="Meniscal Repair", category_id=KNEE_LIGAMENTS),
            Procedure(id=MICRODISCECTOMY, name="Lumbar Microdiscectomy", category_id=LUMBAR),
        ],
    }


def make_resource(id, title, minutes=0, **kwargs):
    return Resource(id=id, title=title, created_at=BASE_TIME + timedelta(minutes=minutes), **kwargs)


@pytest.fixture
def resources():
    return [
        make_resource(1, "MIS bunion technique", 1, category_id=MIS_BUNION, keywords="percutaneous"),
        make_resource(2, "Chevron osteotomy pearls", 2, procedure_id=CHEVRON),
        make_resource(3, "Total ankle replacement", 3, category_id=ANKLE_ARTHRITIS),
        make_resource(4, "ACL graft choice", 4, category_id=KNEE_LIGAMENTS, description="Bone patellar tendon"),
        make_resource(5, "Meniscal repair", 5, procedure_id=MENISCAL_REPAIR),
        make_resource(6, "Lumbar decompression", 6, category_id=LUMBAR),
        make_resource(7, "Practice management", 7),
    ]


@pytest.fixture
def store(taxonomy, resources):
    return FakeStore(resources=resources, **taxonomy)


@pytest.fixture
def profile_factory():
    def build(id=1, role=Role.USER, specialty_id=None, subspecialty_id=None):
        return UserProfile(id=id, role=role, specialty_id=specialty_id, subspecialty_id=subspecialty_id)

    return build


# =============================================================================
# FLASK FIXTURES
# =============================================================================
# No app context stays pushed while the test client runs, so every request gets
# a fresh one (and a fresh Flask-Login user). Direct DB work in tests opens its
# own ``with app.app_context():`` block.

@pytest.fixture
def app():
    from app import create_app
    from cli import seed_taxonomy
    from extensions import db

    app = create_app({
        "TESTING": True,
        "SECRET_KEY": "test-secret",
        "SQLALCHEMY_DATABASE_URI": "sqlite://",
        "SESSION_COOKIE_SECURE": False,
        "REMEMBER_COOKIE_SECURE": False,
        "LIBRARY_PAGE_SIZE": 10,
    })
    with app.app_context():
        seed_taxonomy()
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def taxonomy_ids(app):
    """Name -> id lookups for the seeded taxonomy."""
    from models import Category, Specialty, Subspecialty

    with app.app_context():
        return {
            "specialties": {s.name: s.id for s in Specialty.query.all()},
            "subspecialties": {
                (s.specialty.name, s.name): s.id for s in Subspecialty.query.all()
            },
            "categories": {c.name: c.id for c in Category.query.all()},
        }


@pytest.fixture
def make_user(app):
    from werkzeug.security import generate_password_hash

    from extensions import db
    from models import User

    def build(email, role="user", specialty_id=None, subspecialty_id=None, password="secret"):
        with app.app_context():
            user = User(
                email=email,
                role=role,
                specialty_id=specialty_id,
                subspecialty_id=subspecialty_id,
                password_hash=generate_password_hash(password),
                onboarding_complete=True,
            )
            db.session.add(user)
            db.session.commit()
            return user.id

    return build


@pytest.fixture
def login():
    def do_login(client, email, password="secret"):
        resp = client.post("/library/login", json={"email": email, "password": password})
        assert resp.status_code == 200, resp.get_json()
        return resp

    return do_login
