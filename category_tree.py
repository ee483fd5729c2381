# category_tree.py - two-level category tree built from a flat category list
import logging
from dataclasses import dataclass, field
from typing import Iterable, Optional

from errors import InvalidSelection
from records import Category

logger = logging.getLogger(__name__)


def _order_key(cat: Category):
    return (cat.order, cat.id)


@dataclass(frozen=True)
class CategoryNode:
    category: Category
    subcategories: tuple[Category, ...] = ()

    @property
    def id(self) -> int:
        return self.category.id

    def to_dict(self) -> dict:
        return {
            "id": self.category.id,
            "name": self.category.name,
            "order": self.category.order,
            "subspecialty_id": self.category.subspecialty_id,
            "subcategories": [
                {"id": c.id, "name": c.name, "order": c.order} for c in self.subcategories
            ],
        }


@dataclass(frozen=True)
class CategoryIndex:
    """Flat arena of categories plus the parent -> children index derived from it."""

    arena: dict[int, Category] = field(default_factory=dict)
    children: dict[int, tuple[int, ...]] = field(default_factory=dict)

    @classmethod
    def from_categories(cls, categories: Iterable[Category]) -> "CategoryIndex":
        arena: dict[int, Category] = {}
        for cat in categories:
            arena[cat.id] = cat

        grouped: dict[int, list[Category]] = {}
        for cat in arena.values():
            if cat.parent_category_id is not None:
                grouped.setdefault(cat.parent_category_id, []).append(cat)

        children = {
            parent_id: tuple(c.id for c in sorted(kids, key=_order_key))
            for parent_id, kids in grouped.items()
        }
        return cls(arena=arena, children=children)

    def get(self, category_id: Optional[int]) -> Optional[Category]:
        if category_id is None:
            return None
        return self.arena.get(category_id)

    def children_of(self, category_id: int) -> tuple[Category, ...]:
        return tuple(self.arena[cid] for cid in self.children.get(category_id, ()))


@dataclass(frozen=True)
class CategoryTree:
    nodes: tuple[CategoryNode, ...] = ()
    excluded: tuple[int, ...] = ()

    def __iter__(self):
        return iter(self.nodes)

    def __len__(self):
        return len(self.nodes)

    def allowed_ids(self) -> frozenset[int]:
        ids = set()
        for node in self.nodes:
            ids.add(node.id)
            ids.update(c.id for c in node.subcategories)
        return frozenset(ids)

    def contains(self, category_id: Optional[int]) -> bool:
        return category_id is not None and category_id in self.allowed_ids()

    def expand(self, category_id: int) -> frozenset[int]:
        """Selected id plus its direct subcategories (a subcategory expands to itself)."""
        for node in self.nodes:
            if node.id == category_id:
                return frozenset([node.id, *(c.id for c in node.subcategories)])
        return frozenset([category_id])

    def to_list(self) -> list[dict]:
        return [node.to_dict() for node in self.nodes]


def build_category_tree(categories: Iterable[Category]) -> CategoryTree:
    index = CategoryIndex.from_categories(categories)
    excluded: list[int] = []

    top_level = sorted(
        (c for c in index.arena.values() if c.parent_category_id is None and c.depth == 0),
        key=_order_key,
    )
    top_ids = {c.id for c in top_level}

    for cat in index.arena.values():
        if cat.parent_category_id is None:
            if cat.depth != 0:
                logger.warning(
                    "[TREE] category %s has no parent but depth=%s, excluded", cat.id, cat.depth
                )
                excluded.append(cat.id)
            continue
        parent = index.get(cat.parent_category_id)
        if parent is None:
            logger.warning(
                "[TREE] category %s is orphaned (parent %s not loaded), excluded",
                cat.id,
                cat.parent_category_id,
            )
            excluded.append(cat.id)
        elif cat.parent_category_id not in top_ids or cat.depth != 1:
            logger.warning(
                "[TREE] category %s nests deeper than one level (depth=%s), excluded",
                cat.id,
                cat.depth,
            )
            excluded.append(cat.id)
        elif cat.subspecialty_id != parent.subspecialty_id:
            logger.warning(
                "[TREE] category %s subspecialty %s differs from parent %s (%s), excluded",
                cat.id,
                cat.subspecialty_id,
                parent.id,
                parent.subspecialty_id,
            )
            excluded.append(cat.id)

    dropped = set(excluded)
    nodes = tuple(
        CategoryNode(
            category=top,
            subcategories=tuple(c for c in index.children_of(top.id) if c.id not in dropped),
        )
        for top in top_level
    )
    return CategoryTree(nodes=nodes, excluded=tuple(sorted(dropped)))


def validate_selection(tree: CategoryTree, category_id: Optional[int]) -> Optional[int]:
    if category_id is None:
        return None
    if not tree.contains(category_id):
        raise InvalidSelection("Selected category is not available for your specialty.")
    return category_id
