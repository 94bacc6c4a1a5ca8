import asyncio
from typing import Dict

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from promo_engine.core.security import create_access_token
from promo_engine.db.base import Base
from promo_engine.db.session import get_session
from promo_engine.main import app
from promo_engine.models.catalog import Category, Product, ProductVariant


@pytest.fixture
def test_app() -> Dict[str, object]:
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", future=True)
    SessionLocal = async_sessionmaker(engine, expire_on_commit=False)

    async def init_models() -> None:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    asyncio.run(init_models())

    async def override_get_session():
        async with SessionLocal() as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session
    client = TestClient(app)
    yield {"client": client, "session_factory": SessionLocal}
    client.close()
    app.dependency_overrides.clear()


def _auth(user_id: int = 1, role: str = "admin") -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(str(user_id), role=role)}"}


def _seed(session_factory) -> Dict[str, int]:
    async def seed() -> Dict[str, int]:
        async with session_factory() as session:
            product = Product(name="Trouser", reference="PANT-HE", price=10000, owner_id=4)
            session.add(product)
            await session.flush()
            variant = ProductVariant(product_id=product.id, reference="PANT-HE-001", price=10000, stock=3)
            session.add(variant)
            await session.commit()
            return {"product": product.id, "variant": variant.id}

    return asyncio.run(seed())


def test_admin_routes_require_admin_role(test_app: Dict[str, object]) -> None:
    client: TestClient = test_app["client"]  # type: ignore[assignment]
    res = client.get("/admin/marketing/promotions")
    assert res.status_code == 401, res.text
    assert res.json()["error"] == "Not authenticated"

    res = client.get("/admin/marketing/promotions", headers=_auth(role="owner"))
    assert res.status_code == 403, res.text


def test_apply_and_revert_variant_scenario(test_app: Dict[str, object]) -> None:
    client: TestClient = test_app["client"]  # type: ignore[assignment]
    ids = _seed(test_app["session_factory"])

    res = client.post(
        "/admin/marketing/promotions",
        json={"name": "Spring pants", "conditions": {"reference": "PANT-HE-001"}, "discountPercentage": 20},
        headers=_auth(),
    )
    assert res.status_code == 201, res.text
    rule_id = res.json()["id"]

    res = client.post(f"/admin/marketing/promotions/{rule_id}/apply", headers=_auth())
    assert res.status_code == 200, res.text
    body = res.json()
    assert (body["updated"], body["skipped"], body["conflicted"]) == (1, 0, 0)

    public = client.get(f"/catalog/variants/{ids['variant']}").json()
    assert public == {"id": ids["variant"], "kind": "variant", "reference": "PANT-HE-001", "price": 8000, "is_promotion": True}
    admin_view = client.get(f"/catalog/variants/{ids['variant']}", headers=_auth()).json()
    assert admin_view["old_price"] == 10000
    assert admin_view["applied_ref"] == {"kind": "rule", "id": rule_id}

    res = client.post(f"/admin/marketing/promotions/{rule_id}/revert", headers=_auth())
    assert res.status_code == 200, res.text
    assert res.json()["reverted"] == 1
    assert client.get(f"/catalog/variants/{ids['variant']}").json()["price"] == 10000


def test_apply_errors_use_error_shape(test_app: Dict[str, object]) -> None:
    client: TestClient = test_app["client"]  # type: ignore[assignment]

    res = client.post("/admin/marketing/promotions/999/apply", headers=_auth())
    assert res.status_code == 404, res.text
    assert res.json()["code"] == "rule_not_found"

    res = client.post(
        "/admin/marketing/promotions",
        json={"name": "Paused", "conditions": {"is_new": True}, "discount_percentage": 10, "is_active": False},
        headers=_auth(),
    )
    rule_id = res.json()["id"]
    res = client.post(f"/admin/marketing/promotions/{rule_id}/apply", headers=_auth())
    assert res.status_code == 409, res.text
    assert res.json() == {"error": "This promotion rule is not active.", "code": "rule_inactive"}


def test_create_rule_requires_a_condition_and_known_fields(test_app: Dict[str, object]) -> None:
    client: TestClient = test_app["client"]  # type: ignore[assignment]

    res = client.post(
        "/admin/marketing/promotions",
        json={"name": "Everything", "conditions": {}, "discount_percentage": 10},
        headers=_auth(),
    )
    assert res.status_code == 422, res.text
    assert res.json()["code"] == "validation_error"

    res = client.post(
        "/admin/marketing/promotions",
        json={"name": "Typo", "conditions": {"colour": "red"}, "discount_percentage": 10},
        headers=_auth(),
    )
    assert res.status_code == 422, res.text


def test_delete_rule_reverts_prices(test_app: Dict[str, object]) -> None:
    client: TestClient = test_app["client"]  # type: ignore[assignment]
    ids = _seed(test_app["session_factory"])
    res = client.post(
        "/admin/marketing/promotions",
        json={"name": "Pants", "conditions": {"product_id": ids["product"]}, "percentage": 50},
        headers=_auth(),
    )
    rule_id = res.json()["id"]
    client.post(f"/admin/marketing/promotions/{rule_id}/apply", headers=_auth())
    assert client.get(f"/catalog/products/{ids['product']}").json()["price"] == 5000

    res = client.delete(f"/admin/marketing/promotions/{rule_id}", headers=_auth())
    assert res.status_code == 204, res.text
    assert client.get(f"/catalog/products/{ids['product']}").json()["price"] == 10000
    assert client.get(f"/admin/marketing/promotions/{rule_id}", headers=_auth()).status_code == 404

    listed = client.get("/admin/marketing/promotions", headers=_auth()).json()
    assert listed == []


def test_reconcile_route_reports(test_app: Dict[str, object]) -> None:
    client: TestClient = test_app["client"]  # type: ignore[assignment]
    res = client.post("/admin/marketing/reconcile", headers=_auth())
    assert res.status_code == 200, res.text
    assert res.json() == {"rules_expired": 0, "promo_codes_expired": 0, "entities_reverted": 0}


def test_patch_rule_updates_fields_and_checks_dates(test_app: Dict[str, object]) -> None:
    client: TestClient = test_app["client"]  # type: ignore[assignment]
    res = client.post(
        "/admin/marketing/promotions",
        json={
            "name": "Summer",
            "conditions": {"is_best_seller": True},
            "discount_percentage": 15,
            "start_date": "2025-06-01T00:00:00Z",
            "end_date": "2025-08-31T00:00:00Z",
        },
        headers=_auth(),
    )
    rule_id = res.json()["id"]

    res = client.patch(f"/admin/marketing/promotions/{rule_id}", json={"priority": 5}, headers=_auth())
    assert res.status_code == 200, res.text
    assert res.json()["priority"] == 5
    assert res.json()["discount_percentage"] == 15

    res = client.patch(
        f"/admin/marketing/promotions/{rule_id}", json={"end_date": "2025-05-01T00:00:00Z"}, headers=_auth()
    )
    assert res.status_code == 400, res.text
    assert res.json()["code"] == "invalid_date_range"


def test_create_rule_accepts_camel_case_conditions_and_actions(test_app: Dict[str, object]) -> None:
    client: TestClient = test_app["client"]  # type: ignore[assignment]

    async def seed_category() -> int:
        async with test_app["session_factory"]() as session:  # type: ignore[operator]
            category = Category(name="Pants")
            session.add(category)
            await session.commit()
            return category.id

    category_id = asyncio.run(seed_category())
    res = client.post(
        "/admin/marketing/promotions",
        json={
            "name": "New pants",
            "conditions": {"categoryId": category_id, "isNew": True},
            "actions": {"discountPercentage": 10},
            "startDate": "2025-06-01T00:00:00Z",
        },
        headers=_auth(),
    )
    assert res.status_code == 201, res.text
    body = res.json()
    assert (body["category_id"], body["is_new"], body["product_id"], body["is_best_seller"]) == (
        category_id,
        True,
        None,
        None,
    )
    assert body["discount_percentage"] == 10
    assert body["start_date"].startswith("2025-06-01")

    res = client.post(
        "/admin/marketing/promotions",
        json={"name": "Best", "conditions": {"productId": 7, "isBestSeller": True}, "actions": {"percentage": 25}},
        headers=_auth(),
    )
    assert res.status_code == 201, res.text
    assert (res.json()["product_id"], res.json()["is_best_seller"], res.json()["discount_percentage"]) == (7, True, 25)

    rule_id = res.json()["id"]
    res = client.patch(
        f"/admin/marketing/promotions/{rule_id}", json={"actions": {"discount_percent": 40}}, headers=_auth()
    )
    assert res.status_code == 200, res.text
    assert res.json()["discount_percentage"] == 40


def test_create_rule_rejects_unknown_keys_and_ambiguous_percentage(test_app: Dict[str, object]) -> None:
    client: TestClient = test_app["client"]  # type: ignore[assignment]
    invalid_bodies = [
        {"name": "Typo", "conditions": {"categoryID": 1}, "actions": {"discountPercentage": 10}},
        {"name": "Typo", "conditions": {"isNew": True}, "actions": {"discountAmount": 10}},
        {"name": "Twice", "conditions": {"isNew": True}, "actions": {"percentage": 10, "discountPercentage": 20}},
        {"name": "Both", "conditions": {"isNew": True}, "discountPercentage": 10, "actions": {"percentage": 20}},
        {"name": "Shape", "conditions": {"isNew": True}, "actions": [10]},
        {"name": "Range", "conditions": {"isNew": True}, "actions": {"discountPercentage": 150}},
    ]
    for body in invalid_bodies:
        res = client.post("/admin/marketing/promotions", json=body, headers=_auth())
        assert res.status_code == 422, (body, res.text)
        assert res.json()["code"] == "validation_error"

    assert client.get("/admin/marketing/promotions", headers=_auth()).json() == []
