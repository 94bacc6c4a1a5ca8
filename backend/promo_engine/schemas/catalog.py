from pydantic import BaseModel


class AppliedRef(BaseModel):
    kind: str
    id: int


class PricedEntityRead(BaseModel):
    id: int
    kind: str
    reference: str | None = None
    price: int | None = None
    is_promotion: bool = False
    old_price: int | None = None
    applied_ref: AppliedRef | None = None
