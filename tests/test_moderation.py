"""Tests for the suggestion moderation workflow."""

from dataclasses import replace

import pytest

from conftest import BASE_TIME, BUNION, FOOT_ANKLE, NEURO, ORTHO, SPINE, SPORTS
from errors import (
    InvalidInput,
    InvalidResourceLink,
    ModerationForbidden,
    RecordNotFound,
    ResourceCreationFailure,
    SuggestionTransitionConflict,
)
from moderation import (
    approve,
    can_moderate,
    list_pending,
    reject,
    submit_suggestion,
    suggestion_filter_for,
    update_suggestion,
)
from records import Role, Suggestion, SuggestionStatus


def suggestion(id, specialty_id=ORTHO, subspecialty_id=FOOT_ANKLE, minutes=0, **kwargs):
    return Suggestion(
        id=id,
        title=f"Suggestion {id}",
        suggested_by=50,
        url=f"https://example.org/{id}",
        category_id=BUNION,
        user_specialty_id=specialty_id,
        user_subspecialty_id=subspecialty_id,
        created_at=BASE_TIME.replace(minute=minutes),
        **kwargs,
    )


@pytest.fixture
def moderated_store(store):
    store.suggestions = {
        1: suggestion(1, minutes=1),
        2: suggestion(2, subspecialty_id=SPORTS, minutes=2),
        3: suggestion(3, specialty_id=NEURO, subspecialty_id=SPINE, minutes=3),
        4: suggestion(4, minutes=4, status=SuggestionStatus.REJECTED),
    }
    return store


@pytest.fixture
def admins(profile_factory):
    return {
        "super": profile_factory(id=900, role=Role.SUPER_ADMIN),
        "ortho": profile_factory(id=901, role=Role.SPECIALTY_ADMIN, specialty_id=ORTHO),
        "foot": profile_factory(id=902, role=Role.SUBSPECIALTY_ADMIN, specialty_id=ORTHO, subspecialty_id=FOOT_ANKLE),
        "sports": profile_factory(id=903, role=Role.SUBSPECIALTY_ADMIN, specialty_id=ORTHO, subspecialty_id=SPORTS),
        "unscoped": profile_factory(id=904, role=Role.SPECIALTY_ADMIN),
        "user": profile_factory(id=905),
    }


def pending_ids(store, profile):
    return [s.id for s in list_pending(store, profile).items]


class TestVisibility:

    def test_super_admin_sees_every_pending(self, moderated_store, admins):
        assert pending_ids(moderated_store, admins["super"]) == [3, 2, 1]

    def test_specialty_admin_sees_own_specialty(self, moderated_store, admins):
        assert pending_ids(moderated_store, admins["ortho"]) == [2, 1]

    def test_subspecialty_admin_sees_own_subspecialty(self, moderated_store, admins):
        assert pending_ids(moderated_store, admins["foot"]) == [1]
        assert can_moderate(admins["foot"], moderated_store.suggestions[1])
        assert not can_moderate(admins["sports"], moderated_store.suggestions[1])

    def test_admin_without_scoping_id_sees_nothing(self, moderated_store, admins):
        assert pending_ids(moderated_store, admins["unscoped"]) == []
        assert suggestion_filter_for(admins["unscoped"]).deny_all

    def test_plain_user_sees_nothing(self, moderated_store, admins):
        view = list_pending(moderated_store, admins["user"])
        assert view.items == () and view.pending_count == 0

    def test_pending_count_matches_items(self, moderated_store, admins):
        view = list_pending(moderated_store, admins["super"])
        assert view.pending_count == len(view.items) == 3


class TestApprove:

    def test_creates_exactly_one_resource(self, moderated_store, admins):
        before = len(moderated_store.resources)
        resource = approve(moderated_store, admins["foot"], 1, now=BASE_TIME)

        assert len(moderated_store.resources) == before + 1
        assert resource.title == "Suggestion 1"
        assert resource.category_id == BUNION
        assert resource.procedure_id is None
        updated = moderated_store.suggestions[1]
        assert updated.status is SuggestionStatus.APPROVED
        assert updated.reviewed_by == 902
        assert updated.reviewed_at == BASE_TIME

    def test_audited(self, moderated_store, admins):
        resource = approve(moderated_store, admins["super"], 1)
        entry = moderated_store.audit[-1]
        assert entry.action_type == "suggestion_approved"
        assert entry.entity_id == 1
        assert entry.metadata["resource_id"] == resource.id

    def test_resource_written_before_status(self, moderated_store, admins):
        approve(moderated_store, admins["super"], 1)
        calls = moderated_store.calls
        assert calls.index("create_resource") < calls.index("update_suggestion_status")

    def test_second_approval_conflicts(self, moderated_store, admins):
        approve(moderated_store, admins["super"], 1)
        count = len(moderated_store.resources)
        with pytest.raises(SuggestionTransitionConflict):
            approve(moderated_store, admins["super"], 1)
        assert len(moderated_store.resources) == count

    def test_creation_failure_leaves_pending(self, moderated_store, admins):
        moderated_store.fail_on.add("create_resource")
        with pytest.raises(ResourceCreationFailure):
            approve(moderated_store, admins["super"], 1)
        assert moderated_store.suggestions[1].status is SuggestionStatus.PENDING

    def test_lost_race_removes_new_resource(self, moderated_store, admins):
        def someone_else_rejects(store, suggestion_id):
            store.suggestions[suggestion_id] = replace(
                store.suggestions[suggestion_id], status=SuggestionStatus.REJECTED
            )

        moderated_store.before_status_update = someone_else_rejects
        count = len(moderated_store.resources)
        with pytest.raises(SuggestionTransitionConflict):
            approve(moderated_store, admins["super"], 1)
        assert len(moderated_store.resources) == count
        assert moderated_store.suggestions[1].status is SuggestionStatus.REJECTED

    def test_invisible_suggestion_is_forbidden(self, moderated_store, admins):
        with pytest.raises(ModerationForbidden):
            approve(moderated_store, admins["sports"], 1)

    def test_plain_user_is_forbidden(self, moderated_store, admins):
        with pytest.raises(ModerationForbidden):
            approve(moderated_store, admins["user"], 1)

    def test_missing_suggestion(self, moderated_store, admins):
        with pytest.raises(RecordNotFound):
            approve(moderated_store, admins["super"], 404)

    def test_audit_failure_does_not_block(self, moderated_store, admins):
        moderated_store.fail_on.add("append_audit_log")
        approve(moderated_store, admins["super"], 1)
        assert moderated_store.suggestions[1].status is SuggestionStatus.APPROVED


class TestReject:

    def test_reject_creates_no_resource(self, moderated_store, admins):
        count = len(moderated_store.resources)
        result = reject(moderated_store, admins["ortho"], 2)
        assert result.status is SuggestionStatus.REJECTED
        assert len(moderated_store.resources) == count
        assert moderated_store.audit[-1].action_type == "suggestion_rejected"

    def test_terminal_state_is_final(self, moderated_store, admins):
        with pytest.raises(SuggestionTransitionConflict):
            reject(moderated_store, admins["super"], 4)
        with pytest.raises(SuggestionTransitionConflict):
            approve(moderated_store, admins["super"], 4)


class TestSubmitAndEdit:

    def test_submit_takes_scope_from_profile(self, store, profile_factory):
        author = profile_factory(id=60, specialty_id=ORTHO, subspecialty_id=FOOT_ANKLE)
        created = submit_suggestion(store, author, {"title": " Great video ", "url": "https://v", "category_id": str(BUNION)})
        assert created.status is SuggestionStatus.PENDING
        assert created.title == "Great video"
        assert created.resource_type == "video"
        assert created.category_id == BUNION
        assert (created.user_specialty_id, created.user_subspecialty_id) == (ORTHO, FOOT_ANKLE)
        assert created.suggested_by == 60

    def test_submit_explicit_scope_wins(self, store, profile_factory):
        author = profile_factory(id=60, specialty_id=ORTHO, subspecialty_id=FOOT_ANKLE)
        created = submit_suggestion(store, author, {"title": "t", "user_subspecialty_id": SPORTS})
        assert created.user_subspecialty_id == SPORTS
        assert created.user_specialty_id == ORTHO

    def test_submit_drops_duration_for_articles(self, store, profile_factory):
        created = submit_suggestion(
            store, profile_factory(), {"title": "t", "resource_type": "article", "duration_seconds": 90}
        )
        assert created.duration_seconds is None

    def test_submit_requires_title(self, store, profile_factory):
        with pytest.raises(InvalidInput):
            submit_suggestion(store, profile_factory(), {"url": "https://v"})

    def test_submit_rejects_unknown_category(self, store, profile_factory):
        with pytest.raises(InvalidResourceLink):
            submit_suggestion(store, profile_factory(), {"title": "t", "category_id": 31337})

    def test_edit_pending(self, moderated_store, admins):
        edited = update_suggestion(moderated_store, admins["foot"], 1, {"title": "Renamed", "user_subspecialty_id": SPORTS})
        assert edited.title == "Renamed"
        assert edited.user_subspecialty_id == SPORTS
        assert edited.url == "https://example.org/1"
        assert moderated_store.audit[-1].action_type == "suggestion_updated"

    def test_edit_terminal_conflicts(self, moderated_store, admins):
        with pytest.raises(SuggestionTransitionConflict):
            update_suggestion(moderated_store, admins["super"], 4, {"title": "x"})
