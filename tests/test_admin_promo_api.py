import csv
import io
from datetime import timedelta
from decimal import Decimal

import pytest

from app.models import PromoCode, PromoCodeUsage, DiscountTypeEnum
from app.services import promo_service

BASE = "/api/v1/admin/promo"


def promo_payload(now, **overrides):
    payload = {
        "code": "summer25",
        "description": "Summer sale",
        "discount_type": "percentage",
        "discount_value": 25,
        "max_discount": 40,
        "start_date": (now - timedelta(days=1)).isoformat(),
        "end_date": (now + timedelta(days=60)).isoformat(),
        "usage_limit": 100,
    }
    payload.update(overrides)
    return payload


class TestAdminAuth:
    def test_missing_key(self, client):
        assert client.get(f"{BASE}/").status_code == 401

    def test_wrong_key(self, client):
        assert client.get(f"{BASE}/", headers={"X-Admin-API-Key": "nope"}).status_code == 401

    def test_unconfigured_key(self, client, admin_headers, monkeypatch):
        from app.core.config import settings
        monkeypatch.setattr(settings, "ADMIN_API_KEY", "")
        assert client.get(f"{BASE}/", headers=admin_headers).status_code == 503


class TestCreate:
    def test_create_normalizes_code(self, client, admin_headers, now):
        resp = client.post(f"{BASE}/", json=promo_payload(now), headers=admin_headers)

        assert resp.status_code == 201
        body = resp.json()
        assert body["code"] == "SUMMER25"
        assert body["discount_type"] == "percentage"
        assert body["used_count"] == 0
        assert body["per_user_limit"] == 1
        assert body["first_time_only"] is False
        assert body["is_active"] is True
        assert Decimal(body["min_order_amount"]) == Decimal("0")

    def test_duplicate_code_is_case_insensitive(self, client, admin_headers, make_promo, now):
        make_promo(code="SUMMER25")
        resp = client.post(f"{BASE}/", json=promo_payload(now, code="Summer25"), headers=admin_headers)
        assert resp.status_code == 400
        assert resp.json()["error"] == "code_exists"

    def test_end_must_follow_start(self, client, admin_headers, now):
        payload = promo_payload(now, start_date=now.isoformat(), end_date=now.isoformat())
        resp = client.post(f"{BASE}/", json=payload, headers=admin_headers)
        assert resp.status_code == 400
        assert resp.json()["error"] == "invalid_window"

    @pytest.mark.parametrize("overrides", [
        {"discount_type": "bogus"},
        {"discount_value": -5},
        {"usage_limit": 0},
        {"per_user_limit": 0},
        {"code": "X" * 51},
    ])
    def test_rejects_invalid_fields(self, client, admin_headers, now, overrides):
        resp = client.post(f"{BASE}/", json=promo_payload(now, **overrides), headers=admin_headers)
        assert resp.status_code == 422


class TestListAndGet:
    def test_list_filters_and_paginates(self, client, admin_headers, make_promo, now):
        make_promo(code="LIVE1")
        make_promo(code="LIVE2", discount_type=DiscountTypeEnum.FIXED, discount_value=Decimal("5"))
        make_promo(code="OFF", is_active=False)
        make_promo(code="OLD", start_date=now - timedelta(days=9), end_date=now - timedelta(days=2))
        make_promo(code="SOON", start_date=now + timedelta(days=2), end_date=now + timedelta(days=9))

        resp = client.get(f"{BASE}/", params={"limit": 2, "sort_by": "code", "sort_order": "asc"}, headers=admin_headers)
        body = resp.json()
        assert resp.status_code == 200
        assert [p["code"] for p in body["data"]] == ["LIVE1", "LIVE2"]
        assert body["pagination"] == {"page": 1, "limit": 2, "total": 5, "pages": 3}

        def codes(**params):
            return sorted(p["code"] for p in client.get(f"{BASE}/", params=params, headers=admin_headers).json()["data"])

        assert codes(status="active") == ["LIVE1", "LIVE2"]
        assert codes(status="inactive") == ["OFF"]
        assert codes(status="expired") == ["OLD"]
        assert codes(status="upcoming") == ["SOON"]
        assert codes(discount_type="fixed") == ["LIVE2"]
        assert codes(search="live") == ["LIVE1", "LIVE2"]

    def test_list_rejects_unknown_status(self, client, admin_headers):
        assert client.get(f"{BASE}/", params={"status": "weird"}, headers=admin_headers).status_code == 422

    def test_get_includes_user_usage(self, client, db, admin_headers, make_promo, make_user):
        user = make_user()
        promo = make_promo(used_count=1)
        db.add(PromoCodeUsage(promo_code_id=promo.id, user_id=user.id, count=1))
        db.commit()

        resp = client.get(f"{BASE}/{promo.id}", headers=admin_headers)

        assert resp.status_code == 200
        usage = resp.json()["user_usage"]
        assert len(usage) == 1
        assert usage[0]["user_id"] == user.id
        assert usage[0]["count"] == 1

    def test_get_unknown(self, client, admin_headers):
        resp = client.get(f"{BASE}/12345", headers=admin_headers)
        assert resp.status_code == 404
        assert resp.json()["detail"] == "Promo code not found"


class TestUpdate:
    def test_partial_update(self, client, admin_headers, make_promo):
        promo = make_promo(max_discount=Decimal("30"))
        resp = client.put(
            f"{BASE}/{promo.id}",
            json={"discount_value": 15, "max_discount": None, "description": "Updated"},
            headers=admin_headers,
        )

        assert resp.status_code == 200
        body = resp.json()
        assert Decimal(body["discount_value"]) == Decimal("15")
        assert body["max_discount"] is None
        assert body["description"] == "Updated"
        assert body["code"] == "SAVE20"

    def test_rename_to_existing_code(self, client, admin_headers, make_promo):
        make_promo(code="TAKEN")
        promo = make_promo(code="MINE")
        resp = client.put(f"{BASE}/{promo.id}", json={"code": "taken"}, headers=admin_headers)
        assert resp.status_code == 400
        assert resp.json()["error"] == "code_exists"

    def test_window_rechecked_against_stored_dates(self, client, admin_headers, make_promo, now):
        promo = make_promo(start_date=now - timedelta(days=1), end_date=now + timedelta(days=1))
        resp = client.put(
            f"{BASE}/{promo.id}",
            json={"end_date": (now - timedelta(days=2)).isoformat()},
            headers=admin_headers,
        )
        assert resp.status_code == 400
        assert resp.json()["error"] == "invalid_window"

    def test_usage_limit_cannot_drop_below_used(self, client, admin_headers, make_promo):
        promo = make_promo(usage_limit=10, used_count=4)
        resp = client.put(f"{BASE}/{promo.id}", json={"usage_limit": 3}, headers=admin_headers)
        assert resp.status_code == 400
        assert resp.json()["error"] == "invalid_limit"

    def test_per_user_limit_cannot_drop_below_a_users_usage(self, client, db, admin_headers, make_promo, make_user):
        user = make_user()
        promo = make_promo(per_user_limit=3, used_count=2)
        db.add(PromoCodeUsage(promo_code_id=promo.id, user_id=user.id, count=2))
        db.commit()

        resp = client.put(f"{BASE}/{promo.id}", json={"per_user_limit": 1}, headers=admin_headers)

        assert resp.status_code == 400
        assert resp.json()["error"] == "invalid_limit"
        db.expire_all()
        assert db.get(PromoCode, promo.id).per_user_limit == 3

    def test_per_user_limit_may_match_highest_usage(self, client, db, admin_headers, make_promo, make_user):
        user = make_user()
        promo = make_promo(per_user_limit=3, used_count=2)
        db.add(PromoCodeUsage(promo_code_id=promo.id, user_id=user.id, count=2))
        db.commit()

        resp = client.put(
            f"{BASE}/{promo.id}",
            json={"per_user_limit": 2, "usage_limit": 2, "description": "Tightened"},
            headers=admin_headers,
        )

        assert resp.status_code == 200
        body = resp.json()
        assert body["per_user_limit"] == 2
        assert body["usage_limit"] == 2
        assert body["description"] == "Tightened"

    def test_rejected_limit_leaves_other_fields_untouched(self, client, db, admin_headers, make_promo):
        promo = make_promo(usage_limit=10, used_count=4, description="Original")
        resp = client.put(
            f"{BASE}/{promo.id}",
            json={"usage_limit": 3, "description": "Changed"},
            headers=admin_headers,
        )

        assert resp.status_code == 400
        db.expire_all()
        stored = db.get(PromoCode, promo.id)
        assert stored.usage_limit == 10
        assert stored.description == "Original"

    def test_extending_window_resurrects_expired_code(self, client, db, admin_headers, make_promo, now):
        promo = make_promo(start_date=now - timedelta(days=5), end_date=now - timedelta(days=1))
        resp = client.put(
            f"{BASE}/{promo.id}",
            json={"end_date": (now + timedelta(days=5)).isoformat()},
            headers=admin_headers,
        )
        assert resp.status_code == 200
        db.expire_all()
        evaluation = promo_service.validate_for_order(db, "SAVE20", Decimal("50"))
        assert evaluation.discount_amount == Decimal("10.00")

    def test_toggle(self, client, admin_headers, make_promo):
        promo = make_promo()
        first = client.patch(f"{BASE}/{promo.id}/toggle", headers=admin_headers)
        second = client.patch(f"{BASE}/{promo.id}/toggle", headers=admin_headers)
        assert first.json()["is_active"] is False
        assert second.json()["is_active"] is True


class TestDelete:
    def test_delete_unused(self, client, admin_headers, make_promo):
        promo = make_promo()
        resp = client.delete(f"{BASE}/{promo.id}", headers=admin_headers)
        assert resp.status_code == 200
        assert client.get(f"{BASE}/{promo.id}", headers=admin_headers).status_code == 404

    def test_delete_used_is_refused(self, client, db, admin_headers, make_promo):
        promo = make_promo(used_count=1)
        resp = client.delete(f"{BASE}/{promo.id}", headers=admin_headers)

        assert resp.status_code == 409
        assert resp.json()["error"] == "promo_in_use"
        db.expire_all()
        assert db.get(PromoCode, promo.id) is not None

    def test_bulk_delete_refuses_when_any_used(self, client, db, admin_headers, make_promo):
        unused = make_promo(code="FRESH")
        used = make_promo(code="WORN", used_count=2)

        resp = client.post(f"{BASE}/bulk-delete", json={"ids": [unused.id, used.id]}, headers=admin_headers)

        assert resp.status_code == 409
        assert resp.json()["used_codes"] == ["WORN"]
        db.expire_all()
        assert db.get(PromoCode, unused.id) is not None

    def test_bulk_delete(self, client, admin_headers, make_promo):
        ids = [make_promo(code=f"BULK{i}").id for i in range(3)]
        resp = client.post(f"{BASE}/bulk-delete", json={"ids": ids}, headers=admin_headers)
        assert resp.status_code == 200
        assert resp.json()["affected"] == 3

    def test_bulk_status(self, client, db, admin_headers, make_promo):
        ids = [make_promo(code=f"BULK{i}").id for i in range(2)]
        resp = client.post(f"{BASE}/bulk-status", json={"ids": ids, "is_active": False}, headers=admin_headers)

        assert resp.status_code == 200
        assert resp.json()["affected"] == 2
        db.expire_all()
        assert all(not db.get(PromoCode, i).is_active for i in ids)


class TestReporting:
    def test_stats(self, client, admin_headers, make_promo, make_user, make_order, auth_headers, now):
        make_promo(code="POPULAR", used_count=7)
        make_promo(code="OLD", start_date=now - timedelta(days=9), end_date=now - timedelta(days=2))
        make_promo(code="SOON", start_date=now + timedelta(days=2), end_date=now + timedelta(days=9))
        make_promo(code="FLAT5", discount_type=DiscountTypeEnum.FIXED, discount_value=Decimal("5"))
        user = make_user()
        order = make_order(user, total="40.00")
        client.post("/api/v1/promo/apply", json={"code": "FLAT5", "order_id": order.id}, headers=auth_headers(user))

        resp = client.get(f"{BASE}/stats", headers=admin_headers)

        assert resp.status_code == 200
        overview = resp.json()["overview"]
        assert overview["total"] == 4
        assert overview["active"] == 2
        assert overview["expired"] == 1
        assert overview["upcoming"] == 1
        assert overview["total_usage"] == 8
        assert Decimal(str(overview["total_discount"])) == Decimal("5")
        top = resp.json()["top_promos"]
        assert [t["code"] for t in top[:2]] == ["POPULAR", "FLAT5"]

    def test_stats_refresh_after_mutation(self, client, admin_headers, make_promo, now):
        make_promo(code="ONE")
        assert client.get(f"{BASE}/stats", headers=admin_headers).json()["overview"]["total"] == 1

        client.post(f"{BASE}/", json=promo_payload(now, code="TWO"), headers=admin_headers)
        assert client.get(f"{BASE}/stats", headers=admin_headers).json()["overview"]["total"] == 2

    def test_export_csv(self, client, admin_headers, make_promo):
        make_promo(code="CSV1", description="Has, a comma")
        make_promo(code="CSV2", usage_limit=5)

        resp = client.get(f"{BASE}/export", headers=admin_headers)

        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/csv")
        assert "promo-codes.csv" in resp.headers["content-disposition"]
        rows = list(csv.DictReader(io.StringIO(resp.text)))
        assert [r["code"] for r in rows] == ["CSV1", "CSV2"]
        assert rows[0]["description"] == "Has, a comma"
        assert rows[0]["usage_limit"] == ""
        assert rows[1]["usage_limit"] == "5"
        assert rows[0]["discount_type"] == "percentage"
