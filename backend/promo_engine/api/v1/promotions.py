from __future__ import annotations

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from promo_engine.core.dependencies import Principal, require_admin
from promo_engine.db.session import get_session
from promo_engine.schemas.promotion import (
    ApplyRuleResponse,
    PromotionRuleCreate,
    PromotionRuleRead,
    PromotionRuleUpdate,
    ReconcileResponse,
    RevertRuleResponse,
)
from promo_engine.services import expiry, rule_application

router = APIRouter(prefix="/admin/marketing", tags=["promotions"])


@router.get("/promotions", response_model=list[PromotionRuleRead])
async def list_promotions(
    session: AsyncSession = Depends(get_session),
    _: Principal = Depends(require_admin),
) -> list[PromotionRuleRead]:
    rules = await rule_application.list_rules(session)
    return [PromotionRuleRead.model_validate(rule) for rule in rules]


@router.post("/promotions", response_model=PromotionRuleRead, status_code=status.HTTP_201_CREATED)
async def create_promotion(
    payload: PromotionRuleCreate,
    session: AsyncSession = Depends(get_session),
    _: Principal = Depends(require_admin),
) -> PromotionRuleRead:
    rule = await rule_application.create_rule(session, payload.to_columns())
    return PromotionRuleRead.model_validate(rule)


@router.get("/promotions/{rule_id}", response_model=PromotionRuleRead)
async def get_promotion(
    rule_id: int,
    session: AsyncSession = Depends(get_session),
    _: Principal = Depends(require_admin),
) -> PromotionRuleRead:
    return PromotionRuleRead.model_validate(await rule_application.get_rule(session, rule_id))


@router.patch("/promotions/{rule_id}", response_model=PromotionRuleRead)
async def update_promotion(
    rule_id: int,
    payload: PromotionRuleUpdate,
    session: AsyncSession = Depends(get_session),
    _: Principal = Depends(require_admin),
) -> PromotionRuleRead:
    rule = await rule_application.update_rule(session, rule_id, payload.to_columns())
    return PromotionRuleRead.model_validate(rule)


@router.delete("/promotions/{rule_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_promotion(
    rule_id: int,
    session: AsyncSession = Depends(get_session),
    _: Principal = Depends(require_admin),
) -> Response:
    await rule_application.delete_rule(session, rule_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/promotions/{rule_id}/apply", response_model=ApplyRuleResponse)
async def apply_promotion(
    rule_id: int,
    session: AsyncSession = Depends(get_session),
    _: Principal = Depends(require_admin),
) -> ApplyRuleResponse:
    summary = await rule_application.apply_rule(session, rule_id)
    return ApplyRuleResponse(
        message=f"Promotion applied to {summary.updated} item(s)",
        **summary.as_dict(),
    )


@router.post("/promotions/{rule_id}/revert", response_model=RevertRuleResponse)
async def revert_promotion(
    rule_id: int,
    session: AsyncSession = Depends(get_session),
    _: Principal = Depends(require_admin),
) -> RevertRuleResponse:
    reverted = await rule_application.revert_rule(session, rule_id)
    return RevertRuleResponse(message=f"Promotion reverted on {reverted} item(s)", reverted=reverted)


@router.post("/reconcile", response_model=ReconcileResponse)
async def reconcile_expired(
    session: AsyncSession = Depends(get_session),
    _: Principal = Depends(require_admin),
) -> ReconcileResponse:
    report = await expiry.run_once(session)
    return ReconcileResponse(**report.as_dict())
