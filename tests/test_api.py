from datetime import timedelta

import jwt
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from cruise_pricing import domain, events
from cruise_pricing.db import get_engine, session
from cruise_pricing.main import app
from cruise_pricing.models import Base, CabinInventory, Cruise, PricingRule


def _auth_headers(role: str = "admin", sub: str | None = None) -> dict[str, str]:
    claims = {"role": role}
    if sub:
        claims["sub"] = sub
    token = jwt.encode(claims, "dev-secret-change-me", algorithm="HS256")
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def db():
    eng = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(eng)
    now = domain.utcnow()
    with session(eng) as s:
        s.add(Cruise(id="cruise-1", name="Aegean Escape", starting_price=1000))
        s.add(CabinInventory(id="inv-1", cruise_id="cruise-1", cabin_category="balcony", capacity=100, held=0, confirmed=75))
        s.add(PricingRule(id="default-pricing-rule", name="Default", priority=100, is_active=True, created_at=now, updated_at=now))
        s.commit()
    app.dependency_overrides[get_engine] = lambda: eng
    yield eng
    app.dependency_overrides.clear()


@pytest.fixture
def client(db, monkeypatch):
    async def _boom(*args, **kwargs):
        raise RuntimeError("rabbitmq down")

    monkeypatch.setattr(events, "EVENTS_STRICT", False)
    monkeypatch.setattr(events.aio_pika, "connect_robust", _boom)
    return TestClient(app)


def _promotion_payload(code: str = "summer2025", **kw) -> dict:
    now = domain.utcnow()
    payload = {
        "code": code,
        "type": "percentage",
        "value": 15,
        "validFrom": (now - timedelta(days=1)).isoformat(),
        "validUntil": (now + timedelta(days=30)).isoformat(),
        "minOrderAmount": 2000,
    }
    payload.update(kw)
    return payload


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_calculate_price(client):
    r = client.post("/pricing/calculate", json={"cruiseId": "cruise-1", "cabinCategory": "balcony"})
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["finalPrice"] == 1920.0
    assert body["currency"] == "USD"
    assert body["breakdown"] == {
        "base": 1600.0,
        "inventoryAdjustment": 320.0,
        "demandAdjustment": 0.0,
        "promotionDiscount": 0.0,
        "groupDiscount": 0.0,
    }
    assert body["appliedRules"] == ["rule:default-pricing-rule", "inventory:low(20%)"]
    assert body["inventory"]["level"] == "low"


def test_calculate_price_by_query(client):
    r = client.get("/pricing/calculate", params={"cruiseId": "cruise-1", "cabinCategory": "Balcony", "numCabins": 4})
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["finalPrice"] == 7296.0
    assert body["breakdown"]["groupDiscount"] == -384.0


def test_calculate_price_input_errors(client):
    r = client.post("/pricing/calculate", json={"cruiseId": "cruise-1"})
    assert r.status_code == 400

    r = client.post("/pricing/calculate", json={"cruiseId": "cruise-1", "cabinCategory": "balcony", "numCabins": 0})
    assert r.status_code == 400

    r = client.post("/pricing/calculate", json={"cruiseId": "cruise-1", "cabinCategory": "penthouse"})
    assert r.status_code == 400
    assert "Invalid cabin category" in r.json()["detail"]

    r = client.post("/pricing/calculate", json={"cruiseId": "nope", "cabinCategory": "balcony"})
    assert r.status_code == 404


def test_calculate_price_without_rule_is_a_conflict(client, db):
    with session(db) as s:
        s.query(PricingRule).delete()
        s.commit()
    r = client.post("/pricing/calculate", json={"cruiseId": "cruise-1", "cabinCategory": "balcony"})
    assert r.status_code == 409


def test_promotion_lifecycle(client):
    admin = _auth_headers()

    r = client.post("/admin/promotions", json=_promotion_payload(), headers=admin)
    assert r.status_code == 200, r.text
    assert r.json()["code"] == "SUMMER2025"
    assert r.json()["maxUsesPerUser"] == 1

    r = client.post("/admin/promotions", json=_promotion_payload("SUMMER2025"), headers=admin)
    assert r.status_code == 409

    # 1920 is below the 2000 minimum.
    r = client.post(
        "/pricing/calculate",
        json={"cruiseId": "cruise-1", "cabinCategory": "balcony", "promoCode": "summer2025"},
    )
    body = r.json()
    assert body["finalPrice"] == 1920.0
    assert body["promotion"]["isValid"] is False
    assert body["promotion"]["message"] == "Minimum order amount of $2000 required"
    assert "promo:SUMMER2025:MIN_ORDER" in body["appliedRules"]

    r = client.post(
        "/promotions/validate",
        json={"code": "summer2025", "cruiseId": "cruise-1", "cabinCategory": "balcony", "totalAmount": 4000},
    )
    assert r.status_code == 200, r.text
    assert r.json()["isValid"] is True
    assert r.json()["discountAmount"] == 600.0

    r = client.patch("/admin/promotions/summer2025", json={"isActive": False}, headers=admin)
    assert r.status_code == 200, r.text
    assert r.json()["isActive"] is False

    r = client.get("/admin/promotions", params={"isActive": "false"}, headers=admin)
    assert [p["code"] for p in r.json()] == ["SUMMER2025"]

    assert client.delete("/admin/promotions/SUMMER2025", headers=admin).status_code == 200
    assert client.delete("/admin/promotions/SUMMER2025", headers=admin).status_code == 404


def test_promotion_input_is_validated(client):
    admin = _auth_headers()
    assert client.post("/admin/promotions", json=_promotion_payload(type="bogo"), headers=admin).status_code == 400
    assert client.post("/admin/promotions", json=_promotion_payload(value=150), headers=admin).status_code == 400
    assert client.post("/admin/promotions", json=_promotion_payload(code="TWO WORDS"), headers=admin).status_code == 400

    now = domain.utcnow()
    backwards = _promotion_payload(validFrom=now.isoformat(), validUntil=(now - timedelta(days=1)).isoformat())
    assert client.post("/admin/promotions", json=backwards, headers=admin).status_code == 400

    r = client.post(
        "/promotions/validate",
        json={"code": "X", "cruiseId": "cruise-1", "cabinCategory": "balcony", "totalAmount": 0},
    )
    assert r.status_code == 400


def test_admin_endpoints_require_staff(client):
    assert client.get("/admin/promotions").status_code == 401
    assert client.get("/admin/promotions", headers=_auth_headers("guest")).status_code == 403
    assert client.get("/admin/pricing-rules", headers=_auth_headers("agent")).status_code == 403
    assert client.get("/price-history", headers=_auth_headers("guest")).status_code == 403


def test_redeem_respects_usage_limit(client):
    admin = _auth_headers()
    r = client.post("/admin/promotions", json=_promotion_payload("ONEOFF", maxUses=1), headers=admin)
    assert r.status_code == 200, r.text

    agent = _auth_headers("agent")
    r = client.post("/promotions/oneoff/redeem", json={"userId": "u1"}, headers=agent)
    assert r.status_code == 200, r.text
    assert r.json()["currentUses"] == 1

    r = client.post("/promotions/ONEOFF/redeem", json={"userId": "u2"}, headers=agent)
    assert r.status_code == 409

    assert client.post("/promotions/MISSING/redeem", json={}, headers=agent).status_code == 404


def test_pricing_rule_crud(client):
    admin = _auth_headers()

    r = client.post(
        "/admin/pricing-rules",
        json={
            "id": "suites-peak",
            "name": "Suites peak",
            "priority": 200,
            "priceMultiplierLow": 1.3,
            "applicableCategories": ["Suite"],
        },
        headers=admin,
    )
    assert r.status_code == 200, r.text
    assert r.json()["applicableCategories"] == ["suite"]

    r = client.post("/admin/pricing-rules", json={"id": "suites-peak", "name": "Again"}, headers=admin)
    assert r.status_code == 409

    r = client.post(
        "/admin/pricing-rules",
        json={"name": "Bad", "inventoryThresholdLow": 60, "inventoryThresholdMedium": 50},
        headers=admin,
    )
    assert r.status_code == 400

    r = client.post("/admin/pricing-rules", json={"name": "Bad", "groupDiscount3To5": 1.5}, headers=admin)
    assert r.status_code == 400

    r = client.get("/admin/pricing-rules", headers=admin)
    assert [x["id"] for x in r.json()] == ["suites-peak", "default-pricing-rule"]

    r = client.patch("/admin/pricing-rules/suites-peak", json={"isActive": False}, headers=admin)
    assert r.status_code == 200, r.text
    assert r.json()["isActive"] is False

    r = client.patch("/admin/pricing-rules/suites-peak", json={"priceMultiplierLow": 0}, headers=admin)
    assert r.status_code == 400

    assert client.delete("/admin/pricing-rules/suites-peak", headers=admin).status_code == 200
    assert client.patch("/admin/pricing-rules/suites-peak", json={"name": "x"}, headers=admin).status_code == 404


def test_recalculate_records_history(client):
    admin = _auth_headers(sub="pricing-admin")

    r = client.post("/pricing/recalculate", json={"cruiseId": "cruise-1", "cabinCategory": "balcony"}, headers=admin)
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["recorded"] is True
    assert body["previousPrice"] == 1600.0
    assert body["history"]["newPrice"] == 1920.0
    assert body["history"]["changeReason"] == "inventory"
    assert body["history"]["changedBy"] == "pricing-admin"

    # Unchanged price: nothing new to record.
    r = client.post("/pricing/recalculate", json={"cruiseId": "cruise-1", "cabinCategory": "balcony"}, headers=admin)
    assert r.json()["recorded"] is False
    assert r.json()["previousPrice"] == 1920.0

    r = client.get("/price-history", params={"cruiseId": "cruise-1"}, headers=admin)
    assert r.status_code == 200, r.text
    body = r.json()
    assert len(body["items"]) == 1
    assert body["stats"]["total"] == 1
    assert body["stats"]["byReason"]["inventory"] == 1
    assert body["stats"]["avgChangePct"] == 20.0

    r = client.get("/price-history", params={"changeReason": "demand"}, headers=admin)
    assert r.json()["items"] == []


def test_recalculate_requires_admin(client):
    r = client.post("/pricing/recalculate", json={"cruiseId": "cruise-1", "cabinCategory": "balcony"})
    assert r.status_code == 401


def test_dev_token_roundtrip(client):
    r = client.post("/dev/token", json={"sub": "ops", "role": "staff"})
    token = r.json()["access_token"]
    r = client.get("/admin/pricing-rules", headers={"Authorization": f"Bearer {token}"})
    assert r.status_code == 200


def test_rule_that_discounts_below_zero_is_rejected(client):
    r = client.post(
        "/admin/pricing-rules",
        json={"name": "Fire sale", "priceMultiplierLow": 0.3, "demandMultiplierHigh": 0.5},
        headers=_auth_headers(),
    )
    assert r.status_code == 400
    assert "below zero" in r.json()["detail"]

    r = client.post(
        "/admin/pricing-rules",
        json={"name": "Soft sale", "priceMultiplierLow": 0.8, "demandMultiplierLow": 0.9},
        headers=_auth_headers(),
    )
    assert r.status_code == 200, r.text


def test_price_history_category_filter_is_case_insensitive(client):
    admin = _auth_headers()
    r = client.post("/pricing/recalculate", json={"cruiseId": "cruise-1", "cabinCategory": "balcony"}, headers=admin)
    assert r.json()["recorded"] is True

    r = client.get("/price-history", params={"cabinCategory": "Balcony"}, headers=admin)
    assert r.status_code == 200, r.text
    assert [h["cabinCategory"] for h in r.json()["items"]] == ["balcony"]

    r = client.get("/price-history", params={"cabinCategory": "penthouse"}, headers=admin)
    assert r.status_code == 400
