import asyncio
from typing import Dict

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from promo_engine.core.security import create_access_token
from promo_engine.db.base import Base
from promo_engine.db.session import get_session
from promo_engine.main import app
from promo_engine.models.catalog import Product
from promo_engine.models.promo_code import PaymentWebhookEvent, PromoCode


@pytest.fixture
def test_app() -> Dict[str, object]:
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", future=True)
    SessionLocal = async_sessionmaker(engine, expire_on_commit=False)

    async def init_models() -> None:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        async with SessionLocal() as session:
            session.add_all(
                [
                    Product(name="Dress", reference="DR-1", price=10000, owner_id=7),
                    Product(name="Shoe", reference="SH-1", price=30000, owner_id=8),
                ]
            )
            await session.commit()

    asyncio.run(init_models())

    async def override_get_session():
        async with SessionLocal() as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session
    client = TestClient(app)
    yield {"client": client, "session_factory": SessionLocal}
    client.close()
    app.dependency_overrides.clear()


def _owner(user_id: int = 7) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(str(user_id), role='owner')}"}


def _create_code(client: TestClient, **overrides) -> dict:
    payload = {"code": " dress15 ", "type": "PERCENTAGE", "value": 15, "duration": "1_MONTH", "start_date": "2025-01-31"}
    payload.update(overrides)
    res = client.post("/admin/marketing/promo-codes", json=payload, headers=_owner())
    assert res.status_code == 201, res.text
    return res.json()


def _prices(session_factory) -> list[tuple]:
    async def load() -> list[tuple]:
        async with session_factory() as session:
            rows = await session.execute(select(Product.owner_id, Product.price, Product.old_price).order_by(Product.id))
            return [tuple(row) for row in rows.all()]

    return asyncio.run(load())


def test_create_promo_code_returns_pending_code(test_app: Dict[str, object]) -> None:
    client: TestClient = test_app["client"]  # type: ignore[assignment]
    body = _create_code(client)
    assert body["code"] == "DRESS15"
    assert body["status"] == "PENDING"
    assert body["end_date"].startswith("2025-02-28")
    assert body["owner_id"] == 7

    res = client.post(
        "/admin/marketing/promo-codes",
        json={"code": "toomuch", "type": "PERCENTAGE", "value": 25, "duration": "1_WEEK"},
        headers=_owner(),
    )
    assert res.status_code == 400, res.text
    assert res.json()["code"] == "value_out_of_range"

    res = client.post(
        "/admin/marketing/promo-codes",
        json={"code": "DRESS15", "type": "PERCENTAGE", "value": 10, "duration": "1_WEEK"},
        headers=_owner(8),
    )
    assert res.status_code == 409, res.text
    assert res.json()["code"] == "duplicate_code"


def test_success_webhook_activates_once_and_marks_up_owner_only(test_app: Dict[str, object]) -> None:
    client: TestClient = test_app["client"]  # type: ignore[assignment]
    session_factory = test_app["session_factory"]
    promo = _create_code(client, start_date=None)
    webhook = {
        "promoId": promo["id"],
        "status": "SUCCESS",
        "provider": "mvola",
        "metadata": {"mvolaPhone": "0340000000", "mvolaName": "Owner", "amount": promo["activation_price"]},
    }

    res = client.post("/webhooks/payments", json=webhook)
    assert res.status_code == 200, res.text
    assert res.json()["activated"] is True
    assert res.json()["already_active"] is False
    after_first = _prices(session_factory)
    assert after_first[0][2] == 10000 and after_first[0][1] > 10000
    assert after_first[1] == (8, 30000, None)

    res = client.post("/webhooks/payments", json=webhook)
    assert res.status_code == 200, res.text
    assert res.json()["already_active"] is True
    assert _prices(session_factory) == after_first

    async def load_events():
        async with session_factory() as session:
            return (await session.execute(select(PaymentWebhookEvent))).scalars().all()

    events = asyncio.run(load_events())
    assert len(events) == 1
    assert events[0].attempts == 2
    assert events[0].processed_at is not None


def test_failed_webhook_is_recorded_without_pricing_changes(test_app: Dict[str, object]) -> None:
    client: TestClient = test_app["client"]  # type: ignore[assignment]
    session_factory = test_app["session_factory"]
    promo = _create_code(client)

    res = client.post("/webhooks/payments", json={"promoId": promo["id"], "status": "FAILED", "provider": "mvola"})
    assert res.status_code == 200, res.text
    assert res.json()["activated"] is False
    assert _prices(session_factory) == [(7, 10000, None), (8, 30000, None)]

    async def load_status():
        async with session_factory() as session:
            return (await session.execute(select(PromoCode.status))).scalar_one()

    assert asyncio.run(load_status()).value == "PENDING"

    res = client.post("/webhooks/payments", json={"promoId": 999, "status": "SUCCESS"})
    assert res.status_code == 404, res.text
    assert res.json()["code"] == "promo_code_not_found"


def test_owner_lists_quotes_and_deletes_codes(test_app: Dict[str, object]) -> None:
    client: TestClient = test_app["client"]  # type: ignore[assignment]
    promo = _create_code(client)

    res = client.post(
        "/admin/marketing/promo-codes/quote",
        json={"type": "PERCENTAGE", "value": 10, "duration": "1_MONTH"},
        headers=_owner(),
    )
    assert res.status_code == 200, res.text
    assert res.json()["activation_price"] == 25000

    assert [item["id"] for item in client.get("/admin/marketing/promo-codes", headers=_owner()).json()] == [promo["id"]]
    assert client.get("/admin/marketing/promo-codes", headers=_owner(8)).json() == []

    assert client.delete(f"/admin/marketing/promo-codes/{promo['id']}", headers=_owner(8)).status_code == 404
    assert client.delete(f"/admin/marketing/promo-codes/{promo['id']}", headers=_owner()).status_code == 204


def test_checkout_validation_route(test_app: Dict[str, object]) -> None:
    client: TestClient = test_app["client"]  # type: ignore[assignment]
    promo = _create_code(client, start_date=None)

    res = client.post("/promo-codes/validate", json={"code": "dress15", "cart_total": 20000})
    assert res.json() == {"valid": False, "code": "DRESS15", "discount": 0, "reason": "inactive"}

    client.post("/webhooks/payments", json={"promoId": promo["id"], "status": "SUCCESS", "provider": "mvola"})
    res = client.post("/promo-codes/validate", json={"code": "dress15", "cart_total": 20000})
    assert res.json() == {"valid": True, "code": "DRESS15", "discount": 3000, "reason": None}


def test_code_with_punctuation_is_rejected(test_app: Dict[str, object]) -> None:
    client: TestClient = test_app["client"]  # type: ignore[assignment]
    res = client.post(
        "/admin/marketing/promo-codes",
        json={"code": "summer-20!", "type": "PERCENTAGE", "value": 10, "duration": "1_WEEK"},
        headers=_owner(),
    )
    assert res.status_code == 400, res.text
    assert res.json()["code"] == "invalid_code_format"
    assert client.get("/admin/marketing/promo-codes", headers=_owner()).json() == []


def test_success_after_end_date_expires_code_and_keeps_prices(test_app: Dict[str, object]) -> None:
    client: TestClient = test_app["client"]  # type: ignore[assignment]
    session_factory = test_app["session_factory"]
    promo = _create_code(client, start_date="2020-01-01")

    res = client.post("/webhooks/payments", json={"promoId": promo["id"], "status": "SUCCESS", "provider": "mvola"})
    assert res.status_code == 409, res.text
    assert _prices(session_factory) == [(7, 10000, None), (8, 30000, None)]

    listed = client.get("/admin/marketing/promo-codes", headers=_owner()).json()
    assert [item["status"] for item in listed] == ["EXPIRED"]
