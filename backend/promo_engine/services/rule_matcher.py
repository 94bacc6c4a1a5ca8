from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Iterable, Union


class EntityKind(str, enum.Enum):
    product = "product"
    variant = "variant"


@dataclass(frozen=True)
class EntityKey:
    kind: EntityKind
    id: int

    def __str__(self) -> str:
        return f"{self.kind.value}:{self.id}"


@dataclass(frozen=True)
class MatchTarget:
    """Read-only view of a product or variant as seen by promotion rules.

    Variants carry the category, flags and owner of their parent product and
    their own reference (SKU).
    """

    key: EntityKey
    product_id: int
    reference: str | None
    category_id: int | None
    is_new: bool
    is_best_seller: bool
    owner_id: int | None
    has_own_price: bool = True


@dataclass(frozen=True)
class CategoryCondition:
    category_id: int


@dataclass(frozen=True)
class ProductCondition:
    product_id: int


@dataclass(frozen=True)
class ReferenceCondition:
    reference: str


@dataclass(frozen=True)
class NewArrivalCondition:
    pass


@dataclass(frozen=True)
class BestSellerCondition:
    pass


Condition = Union[
    CategoryCondition,
    ProductCondition,
    ReferenceCondition,
    NewArrivalCondition,
    BestSellerCondition,
]


def conditions_for_rule(rule) -> list[Condition]:
    """Build the condition set from a rule's targeting columns.

    ``is_new`` / ``is_best_seller`` only exist in their ``True`` form; a stored
    ``False`` adds no condition.
    """
    conditions: list[Condition] = []
    if rule.category_id is not None:
        conditions.append(CategoryCondition(category_id=rule.category_id))
    if rule.product_id is not None:
        conditions.append(ProductCondition(product_id=rule.product_id))
    if rule.reference:
        conditions.append(ReferenceCondition(reference=rule.reference))
    if rule.is_new:
        conditions.append(NewArrivalCondition())
    if rule.is_best_seller:
        conditions.append(BestSellerCondition())
    return conditions


def _matches_one(condition: Condition, target: MatchTarget) -> bool:
    if isinstance(condition, CategoryCondition):
        return target.category_id == condition.category_id
    if isinstance(condition, ProductCondition):
        return target.product_id == condition.product_id
    if isinstance(condition, ReferenceCondition):
        return target.reference == condition.reference
    if isinstance(condition, NewArrivalCondition):
        return bool(target.is_new)
    if isinstance(condition, BestSellerCondition):
        return bool(target.is_best_seller)
    raise TypeError(f"Unsupported rule condition: {condition!r}")


def matches(conditions: Iterable[Condition], target: MatchTarget) -> bool:
    """True when every condition holds for the target. An empty set matches nothing."""
    conditions = list(conditions)
    if not conditions:
        return False
    return all(_matches_one(condition, target) for condition in conditions)
