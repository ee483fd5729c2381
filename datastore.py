# datastore.py - persistence boundary of the library engine
# ------------------------------------------------------------
# Engine code only talks to a DataStore and only gets immutable records back.
# SqlDataStore commits per operation; any SQLAlchemyError is rolled back and
# re-raised as StoreError.
# ------------------------------------------------------------
import abc
import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Iterable, Mapping, Optional

from sqlalchemy.exc import SQLAlchemyError

from errors import StoreError
from extensions import db
from models import (
    AdminAction,
    Category,
    Favorite,
    Procedure,
    Resource,
    ResourceSuggestion,
    Specialty,
    Subspecialty,
)
from records import (
    AuditEntry,
    SuggestionFilter,
    SuggestionStatus,
)
from taxonomy_markers import SpecialtyMarker

logger = logging.getLogger(__name__)

CATEGORY_FIELDS = ("name", "order", "depth", "subspecialty_id", "parent_category_id")

RESOURCE_FIELDS = (
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
    "curated_by",
)

SUGGESTION_FIELDS = (
    "title",
    "url",
    "description",
    "resource_type",
    "image_url",
    "keywords",
    "category_id",
    "duration_seconds",
    "suggested_by",
    "user_specialty_id",
    "user_subspecialty_id",
)


class DataStore(abc.ABC):
    # --- taxonomy ---
    @abc.abstractmethod
    def list_specialties(self): ...

    @abc.abstractmethod
    def list_subspecialties(self, specialty_id=None): ...

    @abc.abstractmethod
    def list_categories(self, subspecialty_ids=None): ...

    @abc.abstractmethod
    def list_procedures(self, category_ids=None): ...

    @abc.abstractmethod
    def get_specialty(self, specialty_id): ...

    @abc.abstractmethod
    def get_subspecialty(self, subspecialty_id): ...

    def find_specialty(self, marker: SpecialtyMarker):
        for spec in self.list_specialties():
            if spec.marker is marker:
                return spec
        return None

    def find_subspecialty(self, specialty_id, marker: SpecialtyMarker):
        for sub in self.list_subspecialties(specialty_id):
            if sub.marker is marker:
                return sub
        return None

    @abc.abstractmethod
    def get_category(self, category_id): ...

    @abc.abstractmethod
    def get_procedure(self, procedure_id): ...

    # --- category management ---
    @abc.abstractmethod
    def create_category(self, fields: dict): ...

    @abc.abstractmethod
    def update_category(self, category_id, fields: dict): ...

    @abc.abstractmethod
    def delete_category(self, category_id) -> tuple: ...

    @abc.abstractmethod
    def set_category_order(self, orders: Mapping[int, int]) -> None: ...

    # --- resources ---
    @abc.abstractmethod
    def list_resources(self): ...

    @abc.abstractmethod
    def get_resource(self, resource_id): ...

    @abc.abstractmethod
    def create_resource(self, fields: dict): ...

    @abc.abstractmethod
    def update_resource(self, resource_id, fields: dict): ...

    @abc.abstractmethod
    def delete_resource(self, resource_id) -> bool: ...

    # --- suggestions ---
    @abc.abstractmethod
    def list_pending_suggestions(self, scope_filter: SuggestionFilter): ...

    @abc.abstractmethod
    def get_suggestion(self, suggestion_id): ...

    @abc.abstractmethod
    def create_suggestion(self, fields: dict): ...

    @abc.abstractmethod
    def update_suggestion(self, suggestion_id, fields: dict): ...

    @abc.abstractmethod
    def update_suggestion_status(
        self,
        suggestion_id,
        status: SuggestionStatus,
        reviewer_id,
        reviewed_at: datetime,
        expected_status: SuggestionStatus = SuggestionStatus.PENDING,
    ) -> bool: ...

    # --- favorites & audit ---
    @abc.abstractmethod
    def list_favorite_ids(self, user_id) -> frozenset: ...

    @abc.abstractmethod
    def toggle_favorite(self, user_id, resource_id) -> bool: ...

    @abc.abstractmethod
    def append_audit_log(self, entry: AuditEntry) -> None: ...


class SqlDataStore(DataStore):
    """DataStore over the Flask-SQLAlchemy session (needs an app context)."""

    def __init__(self, session=None):
        self.session = session or db.session

    @contextmanager
    def _guard(self, op: str):
        try:
            yield
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.warning("[STORE] %s failed: %s", op, e)
            raise StoreError("The library is temporarily unavailable. Please try again.") from e

    # ======================
    # Taxonomy
    # ======================
    def list_specialties(self):
        with self._guard("list_specialties"):
            rows = Specialty.query.order_by(Specialty.order.asc(), Specialty.id.asc()).all()
            return [r.to_record() for r in rows]

    def list_subspecialties(self, specialty_id=None):
        with self._guard("list_subspecialties"):
            q = Subspecialty.query
            if specialty_id is not None:
                q = q.filter(Subspecialty.specialty_id == specialty_id)
            rows = q.order_by(Subspecialty.order.asc(), Subspecialty.id.asc()).all()
            return [r.to_record() for r in rows]

    def list_categories(self, subspecialty_ids: Optional[Iterable[int]] = None):
        with self._guard("list_categories"):
            q = Category.query
            if subspecialty_ids is not None:
                ids = list(subspecialty_ids)
                if not ids:
                    return []
                q = q.filter(Category.subspecialty_id.in_(ids))
            rows = q.order_by(Category.order.asc(), Category.id.asc()).all()
            return [r.to_record() for r in rows]

    def list_procedures(self, category_ids: Optional[Iterable[int]] = None):
        with self._guard("list_procedures"):
            q = Procedure.query
            if category_ids is not None:
                ids = list(category_ids)
                if not ids:
                    return []
                q = q.filter(Procedure.category_id.in_(ids))
            rows = q.order_by(Procedure.name.asc(), Procedure.id.asc()).all()
            return [r.to_record() for r in rows]

    def _get(self, model, pk, op):
        if pk is None:
            return None
        with self._guard(op):
            row = self.session.get(model, pk)
            return row.to_record() if row is not None else None

    def get_specialty(self, specialty_id):
        return self._get(Specialty, specialty_id, "get_specialty")

    def get_subspecialty(self, subspecialty_id):
        return self._get(Subspecialty, subspecialty_id, "get_subspecialty")

    def get_category(self, category_id):
        return self._get(Category, category_id, "get_category")

    def get_procedure(self, procedure_id):
        return self._get(Procedure, procedure_id, "get_procedure")

    # ======================
    # Category management
    # ======================
    def create_category(self, fields: dict):
        with self._guard("create_category"):
            row = Category(**{k: v for k, v in fields.items() if k in CATEGORY_FIELDS})
            self.session.add(row)
            self.session.commit()
            return row.to_record()

    def update_category(self, category_id, fields: dict):
        with self._guard("update_category"):
            row = self.session.get(Category, category_id)
            if row is None:
                return None
            for k, v in fields.items():
                if k in CATEGORY_FIELDS:
                    setattr(row, k, v)
            self.session.commit()
            return row.to_record()

    def delete_category(self, category_id) -> tuple:
        """Delete a category with its subcategories and their procedures.

        Resources and suggestions pointing at them are unlinked, not deleted.
        Returns the deleted category ids (empty when the id is unknown).
        """
        with self._guard("delete_category"):
            if self.session.query(Category.id).filter(Category.id == category_id).first() is None:
                return ()
            child_ids = [
                r[0]
                for r in self.session.query(Category.id).filter(Category.parent_category_id == category_id).all()
            ]
            ids = [category_id, *child_ids]
            proc_ids = [
                r[0] for r in self.session.query(Procedure.id).filter(Procedure.category_id.in_(ids)).all()
            ]

            self.session.query(Resource).filter(Resource.category_id.in_(ids)).update(
                {Resource.category_id: None}, synchronize_session=False
            )
            self.session.query(ResourceSuggestion).filter(ResourceSuggestion.category_id.in_(ids)).update(
                {ResourceSuggestion.category_id: None}, synchronize_session=False
            )
            if proc_ids:
                self.session.query(Resource).filter(Resource.procedure_id.in_(proc_ids)).update(
                    {Resource.procedure_id: None}, synchronize_session=False
                )
                self.session.query(Procedure).filter(Procedure.id.in_(proc_ids)).delete(synchronize_session=False)
            # children first, the parent row references nothing
            self.session.query(Category).filter(Category.id.in_(child_ids)).delete(synchronize_session=False)
            self.session.query(Category).filter(Category.id == category_id).delete(synchronize_session=False)
            self.session.commit()
            self.session.expire_all()
            return tuple(ids)

    def set_category_order(self, orders: Mapping[int, int]) -> None:
        with self._guard("set_category_order"):
            for category_id, order in orders.items():
                self.session.query(Category).filter(Category.id == category_id).update(
                    {Category.order: order}, synchronize_session=False
                )
            self.session.commit()
            self.session.expire_all()

    # ======================
    # Resources
    # ======================
    def list_resources(self):
        with self._guard("list_resources"):
            rows = Resource.query.order_by(Resource.created_at.desc(), Resource.id.desc()).all()
            return [r.to_record() for r in rows]

    def get_resource(self, resource_id):
        return self._get(Resource, resource_id, "get_resource")

    def create_resource(self, fields: dict):
        with self._guard("create_resource"):
            row = Resource(**{k: v for k, v in fields.items() if k in RESOURCE_FIELDS})
            self.session.add(row)
            self.session.commit()
            return row.to_record()

    def update_resource(self, resource_id, fields: dict):
        with self._guard("update_resource"):
            row = self.session.get(Resource, resource_id)
            if row is None:
                return None
            for k, v in fields.items():
                if k in RESOURCE_FIELDS:
                    setattr(row, k, v)
            self.session.commit()
            return row.to_record()

    def delete_resource(self, resource_id) -> bool:
        with self._guard("delete_resource"):
            row = self.session.get(Resource, resource_id)
            if row is None:
                return False
            self.session.delete(row)
            self.session.commit()
            return True

    # ======================
    # Suggestions
    # ======================
    def list_pending_suggestions(self, scope_filter: SuggestionFilter):
        if scope_filter.deny_all:
            return []
        with self._guard("list_pending_suggestions"):
            q = ResourceSuggestion.query.filter(
                ResourceSuggestion.status == SuggestionStatus.PENDING.value
            )
            if scope_filter.column is not None:
                q = q.filter(getattr(ResourceSuggestion, scope_filter.column) == scope_filter.value)
            rows = q.order_by(
                ResourceSuggestion.created_at.desc(), ResourceSuggestion.id.desc()
            ).all()
            return [r.to_record() for r in rows]

    def get_suggestion(self, suggestion_id):
        return self._get(ResourceSuggestion, suggestion_id, "get_suggestion")

    def create_suggestion(self, fields: dict):
        with self._guard("create_suggestion"):
            row = ResourceSuggestion(
                status=SuggestionStatus.PENDING.value,
                **{k: v for k, v in fields.items() if k in SUGGESTION_FIELDS},
            )
            self.session.add(row)
            self.session.commit()
            return row.to_record()

    def update_suggestion(self, suggestion_id, fields: dict):
        with self._guard("update_suggestion"):
            row = self.session.get(ResourceSuggestion, suggestion_id)
            if row is None:
                return None
            for k, v in fields.items():
                if k in SUGGESTION_FIELDS:
                    setattr(row, k, v)
            self.session.commit()
            return row.to_record()

    def update_suggestion_status(
        self,
        suggestion_id,
        status: SuggestionStatus,
        reviewer_id,
        reviewed_at: datetime,
        expected_status: SuggestionStatus = SuggestionStatus.PENDING,
    ) -> bool:
        with self._guard("update_suggestion_status"):
            updated = (
                self.session.query(ResourceSuggestion)
                .filter(
                    ResourceSuggestion.id == suggestion_id,
                    ResourceSuggestion.status == expected_status.value,
                )
                .update(
                    {
                        ResourceSuggestion.status: status.value,
                        ResourceSuggestion.reviewed_by: reviewer_id,
                        ResourceSuggestion.reviewed_at: reviewed_at,
                    },
                    synchronize_session=False,
                )
            )
            self.session.commit()
            # expire so later get_suggestion() reads the new status
            self.session.expire_all()
            return updated == 1

    # ======================
    # Favorites & audit
    # ======================
    def list_favorite_ids(self, user_id) -> frozenset:
        if user_id is None:
            return frozenset()
        with self._guard("list_favorite_ids"):
            rows = self.session.query(Favorite.resource_id).filter(Favorite.user_id == user_id).all()
            return frozenset(r[0] for r in rows)

    def toggle_favorite(self, user_id, resource_id) -> bool:
        """Returns True when the resource is a favorite after the call."""
        with self._guard("toggle_favorite"):
            fav = Favorite.query.filter_by(user_id=user_id, resource_id=resource_id).first()
            if fav is not None:
                self.session.delete(fav)
                self.session.commit()
                return False
            self.session.add(Favorite(user_id=user_id, resource_id=resource_id))
            self.session.commit()
            return True

    def append_audit_log(self, entry: AuditEntry) -> None:
        with self._guard("append_audit_log"):
            self.session.add(AdminAction.from_entry(entry))
            self.session.commit()


def current_store() -> DataStore:
    """Store for the current request; tests may install one under app.extensions["library_store"]."""
    from flask import current_app

    store = current_app.extensions.get("library_store")
    return store if store is not None else SqlDataStore()
