from datetime import datetime
from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator

_PERCENTAGE_KEYS = ("discount_percentage", "discountPercentage", "percentage", "discount_percent")


def _percentage_field(**kwargs: Any):
    return Field(gt=0, le=100, validation_alias=AliasChoices(*_PERCENTAGE_KEYS), **kwargs)


def _lift_actions(data: Any) -> Any:
    """Accept ``{"actions": {"discountPercentage": 10}}`` as well as a top-level percentage."""
    if not isinstance(data, dict) or "actions" not in data:
        return data
    data = dict(data)
    actions = data.pop("actions")
    if actions is None:
        return data
    if not isinstance(actions, dict):
        raise ValueError("actions must be an object")
    unknown = sorted(set(actions) - set(_PERCENTAGE_KEYS))
    if unknown:
        raise ValueError(f"Unknown action field(s): {', '.join(unknown)}")
    given = [key for key in _PERCENTAGE_KEYS if key in actions]
    if len(given) > 1:
        raise ValueError("Give the discount percentage once")
    if given:
        if any(key in data for key in _PERCENTAGE_KEYS):
            raise ValueError("Give the discount percentage either at top level or under actions")
        data["discount_percentage"] = actions[given[0]]
    return data


class RuleConditions(BaseModel):
    model_config = ConfigDict(extra="forbid")

    category_id: int | None = Field(default=None, validation_alias=AliasChoices("category_id", "categoryId"))
    product_id: int | None = Field(default=None, validation_alias=AliasChoices("product_id", "productId"))
    reference: str | None = Field(default=None, min_length=1, max_length=64)
    is_new: Literal[True] | None = Field(default=None, validation_alias=AliasChoices("is_new", "isNew"))
    is_best_seller: Literal[True] | None = Field(
        default=None, validation_alias=AliasChoices("is_best_seller", "isBestSeller")
    )


class PromotionRuleCreate(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    name: str = Field(min_length=1, max_length=120)
    priority: int = 0
    conditions: RuleConditions
    discount_percentage: int = _percentage_field()
    start_date: datetime | None = Field(default=None, validation_alias=AliasChoices("start_date", "startDate"))
    end_date: datetime | None = Field(default=None, validation_alias=AliasChoices("end_date", "endDate"))
    is_active: bool = Field(default=True, validation_alias=AliasChoices("is_active", "isActive"))

    @model_validator(mode="before")
    @classmethod
    def _accept_actions(cls, data: Any) -> Any:
        return _lift_actions(data)

    @model_validator(mode="after")
    def _require_condition(self):
        if not self.conditions.model_dump(exclude_none=True):
            raise ValueError("At least one targeting condition is required")
        return self

    def to_columns(self) -> dict:
        data = self.model_dump(exclude={"conditions"})
        data.update(self.conditions.model_dump())
        return data


class PromotionRuleUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    name: str | None = Field(default=None, min_length=1, max_length=120)
    priority: int | None = None
    conditions: RuleConditions | None = None
    discount_percentage: int | None = _percentage_field(default=None)
    start_date: datetime | None = Field(default=None, validation_alias=AliasChoices("start_date", "startDate"))
    end_date: datetime | None = Field(default=None, validation_alias=AliasChoices("end_date", "endDate"))
    is_active: bool | None = Field(default=None, validation_alias=AliasChoices("is_active", "isActive"))

    @model_validator(mode="before")
    @classmethod
    def _accept_actions(cls, data: Any) -> Any:
        return _lift_actions(data)

    @model_validator(mode="after")
    def _require_condition(self):
        if self.conditions is not None and not self.conditions.model_dump(exclude_none=True):
            raise ValueError("At least one targeting condition is required")
        return self

    def to_columns(self) -> dict:
        data = self.model_dump(exclude={"conditions"}, exclude_unset=True)
        if self.conditions is not None:
            data.update(self.conditions.model_dump())
        return data


class PromotionRuleRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    priority: int
    category_id: int | None = None
    product_id: int | None = None
    reference: str | None = None
    is_new: bool | None = None
    is_best_seller: bool | None = None
    discount_percentage: int
    start_date: datetime | None = None
    end_date: datetime | None = None
    is_active: bool
    created_at: datetime
    updated_at: datetime


class ApplyRuleResponse(BaseModel):
    message: str
    updated: int
    skipped: int
    conflicted: int


class RevertRuleResponse(BaseModel):
    message: str
    reverted: int


class ReconcileResponse(BaseModel):
    rules_expired: int
    promo_codes_expired: int
    entities_reverted: int
