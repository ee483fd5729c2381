"""Tests for admin category management."""

import pytest

from category_admin import (
    create_category,
    delete_category,
    list_managed_categories,
    rename_category,
    reorder_categories,
)
from category_tree import build_category_tree
from conftest import (
    ANKLE_ARTHRITIS,
    BUNION,
    CHEVRON,
    FOOT_ANKLE,
    KNEE_LIGAMENTS,
    MIS_BUNION,
    NEURO,
    ORTHO,
    SPINE,
    SPORTS,
)
from errors import InvalidInput, InvalidResourceLink, ModerationForbidden, RecordNotFound
from records import Role


@pytest.fixture
def admins(profile_factory):
    return {
        "super": profile_factory(id=900, role=Role.SUPER_ADMIN),
        "ortho": profile_factory(id=901, role=Role.SPECIALTY_ADMIN, specialty_id=ORTHO),
        "neuro": profile_factory(id=902, role=Role.SPECIALTY_ADMIN, specialty_id=NEURO),
        "foot": profile_factory(id=903, role=Role.SUBSPECIALTY_ADMIN, specialty_id=ORTHO, subspecialty_id=FOOT_ANKLE),
        "user": profile_factory(id=904, specialty_id=ORTHO, subspecialty_id=FOOT_ANKLE),
    }


class TestCreate:

    def test_top_level_goes_last(self, store, admins):
        created = create_category(store, admins["foot"], {"name": " Hallux Rigidus "})
        assert created.name == "Hallux Rigidus"
        assert created.subspecialty_id == FOOT_ANKLE
        assert created.depth == 0 and created.parent_category_id is None
        assert created.order == 3
        assert store.audit[-1].action_type == "category_created"

    def test_subcategory_inherits_parent_subspecialty(self, store, admins):
        created = create_category(store, admins["super"], {"name": "Lapidus", "parent_category_id": str(BUNION)})
        assert created.depth == 1
        assert created.parent_category_id == BUNION
        assert created.subspecialty_id == FOOT_ANKLE
        assert created.order == 2

        tree = build_category_tree(store.categories.values())
        assert tree.expand(BUNION) == {BUNION, MIS_BUNION, created.id}

    def test_no_third_level(self, store, admins):
        with pytest.raises(InvalidInput):
            create_category(store, admins["super"], {"name": "Too deep", "parent_category_id": MIS_BUNION})

    def test_subcategory_cannot_switch_subspecialty(self, store, admins):
        with pytest.raises(InvalidInput):
            create_category(
                store, admins["super"], {"name": "x", "parent_category_id": BUNION, "subspecialty_id": SPORTS}
            )

    def test_unknown_parent(self, store, admins):
        with pytest.raises(InvalidResourceLink):
            create_category(store, admins["super"], {"name": "x", "parent_category_id": 4242})

    def test_name_required(self, store, admins):
        with pytest.raises(InvalidInput):
            create_category(store, admins["foot"], {"name": "   "})

    def test_super_admin_must_pick_subspecialty(self, store, admins):
        with pytest.raises(InvalidInput):
            create_category(store, admins["super"], {"name": "x"})


class TestPermissions:

    def test_subspecialty_admin_stays_in_own_subspecialty(self, store, admins):
        with pytest.raises(ModerationForbidden):
            create_category(store, admins["foot"], {"name": "x", "subspecialty_id": SPORTS})

    def test_specialty_admin_covers_its_subspecialties(self, store, admins):
        assert create_category(store, admins["ortho"], {"name": "x", "subspecialty_id": SPORTS}).subspecialty_id == SPORTS
        with pytest.raises(ModerationForbidden):
            create_category(store, admins["neuro"], {"name": "x", "subspecialty_id": SPORTS})

    def test_plain_user_forbidden(self, store, admins):
        with pytest.raises(ModerationForbidden):
            rename_category(store, admins["user"], BUNION, {"name": "x"})


class TestRenameDelete:

    def test_rename(self, store, admins):
        renamed = rename_category(store, admins["foot"], BUNION, {"name": "Hallux Valgus"})
        assert renamed.name == "Hallux Valgus"
        assert store.audit[-1].metadata == {"from": "Bunion", "to": "Hallux Valgus"}

    def test_delete_cascades_to_subcategories(self, store, admins):
        deleted = delete_category(store, admins["foot"], BUNION)
        assert set(deleted) == {BUNION, MIS_BUNION}
        assert BUNION not in store.categories and MIS_BUNION not in store.categories
        assert CHEVRON not in store.procedures
        # resources survive, unlinked
        assert store.resources[1].category_id is None
        assert store.resources[2].procedure_id is None
        assert store.audit[-1].action_type == "category_deleted"

    def test_delete_missing(self, store, admins):
        with pytest.raises(RecordNotFound):
            delete_category(store, admins["super"], 4242)


class TestReorder:

    def test_siblings_get_new_order(self, store, admins):
        reordered = reorder_categories(store, admins["foot"], [ANKLE_ARTHRITIS, BUNION])
        assert [(c.id, c.order) for c in reordered] == [(ANKLE_ARTHRITIS, 1), (BUNION, 2)]
        tree = list_managed_categories(store, admins["foot"])
        assert [node.id for node in tree] == [ANKLE_ARTHRITIS, BUNION]

    def test_mixed_parents_rejected(self, store, admins):
        with pytest.raises(InvalidInput):
            reorder_categories(store, admins["super"], [BUNION, MIS_BUNION])

    def test_mixed_subspecialties_rejected(self, store, admins):
        with pytest.raises(InvalidInput):
            reorder_categories(store, admins["super"], [BUNION, KNEE_LIGAMENTS])

    def test_duplicates_rejected(self, store, admins):
        with pytest.raises(InvalidInput):
            reorder_categories(store, admins["super"], [BUNION, BUNION])

    @pytest.mark.parametrize("ids", [None, [], "100", ["abc"]])
    def test_bad_id_lists_rejected(self, store, admins, ids):
        with pytest.raises(InvalidInput):
            reorder_categories(store, admins["super"], ids)


def test_managed_list_needs_visible_subspecialty(store, admins):
    with pytest.raises(ModerationForbidden):
        list_managed_categories(store, admins["foot"], SPINE)
    with pytest.raises(RecordNotFound):
        list_managed_categories(store, admins["super"], 4242)
