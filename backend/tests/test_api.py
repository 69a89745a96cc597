"""
HTTP-level tests for the v1 API.

Covers:
- Registration, login and referral codes
- Authentication and admin guards
- Order, verification and scan endpoints
- Finder location sharing
- Admin QR stock and loyalty endpoints
- Stripe webhook signature handling
"""
import io
import json
import os

import pytest
from PIL import Image

from pettags.extensions import db
from pettags.integrations.stripe.client import sign_payload
from pettags.models.qr_code import QRCode
from pettags.models.subscription import Subscription
from pettags.models.user import User
from pettags.modules.qrcodes import contact

from factories import DEFAULT_PASSWORD, as_user, make_code, make_codes, make_pet, make_subscription, make_user


def register(client, email="new@example.com", **extra):
    body = {"email": email, "password": "longenough", "firstName": "Nia", "lastName": "New"}
    body.update(extra)
    return client.post("/api/v1/auth/register", json=body)


# ══════════════════════════════════════════════
#  Accounts
# ══════════════════════════════════════════════

def test_health(client):
    assert client.get("/health").get_json() == {"status": "ok"}


def test_register_returns_token_and_referral_code(client):
    res = register(client, "  New@Example.com ")
    assert res.status_code == 201
    data = res.get_json()
    assert data["email"] == "new@example.com"
    assert data["token"]
    assert len(data["referralCode"]) == 8

    me = client.get("/api/v1/users/me", headers={"Authorization": f"Bearer {data['token']}"})
    assert me.status_code == 200
    assert me.get_json()["user"]["email"] == "new@example.com"


def test_register_rejects_short_password(client):
    res = register(client, password="short")
    assert res.status_code == 400
    assert "password" in res.get_json()["details"]


def test_register_rejects_duplicate_email(client):
    make_user("new@example.com")
    assert register(client).status_code == 409


def test_register_with_referral_credits_both(client):
    referrer = make_user("ref@example.com", referral_code="REFER001")
    res = register(client, referralCode="REFER001")
    assert res.status_code == 201
    assert res.get_json()["loyaltyPoints"] == 100
    db.session.refresh(referrer)
    assert referrer.loyalty_points == 100


def test_register_with_unknown_referral_creates_nothing(client):
    res = register(client, referralCode="NOPE0000")
    assert res.status_code == 400
    assert res.get_json()["error"] == "Invalid referral code"
    assert User.query.count() == 0


def test_login(client):
    make_user("owner@example.com")
    res = client.post("/api/v1/auth/login", json={"email": "owner@example.com", "password": DEFAULT_PASSWORD})
    assert res.status_code == 200
    assert res.get_json()["token"]

    bad = client.post("/api/v1/auth/login", json={"email": "owner@example.com", "password": "wrong"})
    assert bad.status_code == 401


def test_protected_endpoints_require_login(client):
    assert client.get("/api/v1/users/me").status_code == 401
    assert client.get("/api/v1/subscriptions").status_code == 401


def test_pet_count_and_update(client):
    user = make_user()
    pet = make_pet(user)

    count = client.get("/api/v1/users/me/pet-count", headers=as_user(user)).get_json()
    assert count == {"count": 1, "maxPets": 5, "canAddMore": True}

    res = client.put(f"/api/v1/users/me/pets/{pet.id}", json={"breed": "Beagle", "age": 4}, headers=as_user(user))
    assert res.status_code == 200
    assert res.get_json()["pet"]["breed"] == "Beagle"

    bad = client.put(f"/api/v1/users/me/pets/{pet.id}", json={"age": 99}, headers=as_user(user))
    assert bad.status_code == 400


def test_pet_image_upload_is_downscaled(client, app):
    user = make_user()
    pet = make_pet(user)
    buf = io.BytesIO()
    Image.new("RGB", (1600, 1200), "orange").save(buf, format="PNG")
    buf.seek(0)

    res = client.post(
        f"/api/v1/users/me/pets/{pet.id}/image",
        data={"image": (buf, "rex.png")},
        headers=as_user(user),
        content_type="multipart/form-data",
    )
    assert res.status_code == 200
    url = res.get_json()["pet"]["imageUrl"]
    assert url.startswith("/uploads/pets/")

    stored = os.path.join(app.config["UPLOAD_FOLDER"], url[len("/uploads/"):])
    with Image.open(stored) as img:
        assert max(img.size) == 800


def test_pet_image_upload_rejects_non_images(client):
    user = make_user()
    pet = make_pet(user)
    res = client.post(
        f"/api/v1/users/me/pets/{pet.id}/image",
        data={"image": (io.BytesIO(b"not an image"), "rex.jpg")},
        headers=as_user(user),
        content_type="multipart/form-data",
    )
    assert res.status_code == 400


def test_pets_of_other_users_are_hidden(client):
    owner = make_user("owner@example.com")
    other = make_user("other@example.com")
    pet = make_pet(owner)
    assert client.get(f"/api/v1/users/me/pets/{pet.id}", headers=as_user(other)).status_code == 404


def test_account_deletion_returns_tags_to_stock(client):
    user = make_user()
    pet = make_pet(user)
    row = make_code("QR-0001", user=user, pet=pet, status="verified")
    make_subscription(user)

    res = client.delete("/api/v1/users/me", headers=as_user(user))
    assert res.status_code == 200
    assert res.get_json()["releasedQrCodes"] == 1
    db.session.refresh(row)
    assert row.status == "unassigned"
    assert Subscription.query.count() == 0


def test_account_deletion_cancels_renewing_stripe_subscription(client, stripe):
    user = make_user()
    make_subscription(user, "monthly", amount="2.95", days=30, auto_renew=True, stripe_subscription_id="sub_live_1")

    res = client.delete("/api/v1/users/me", headers=as_user(user))
    assert res.status_code == 200
    assert stripe.subscriptions["sub_live_1"]["status"] == "canceled"


# ══════════════════════════════════════════════
#  Orders, verification and scans
# ══════════════════════════════════════════════

def test_order_checkout_flow(client, stripe):
    user = make_user()
    make_codes(1)

    res = client.post(
        "/api/v1/user-pet-tag-orders",
        json={"petName": "Rex", "totalCostEuro": 19.99, "tagColor": "blue"},
        headers=as_user(user),
    )
    assert res.status_code == 201
    created = res.get_json()
    assert created["clientSecret"]
    stripe.succeed(created["paymentIntentId"])

    res = client.post(
        f"/api/v1/user-pet-tag-orders/{created['order']['id']}/confirm-payment",
        json={"paymentIntentId": created["paymentIntentId"]},
        headers=as_user(user),
    )
    assert res.status_code == 200
    data = res.get_json()
    assert data["paymentSucceeded"] is True
    assert data["qrCode"]["code"] == "QR-0001"
    assert data["qrCode"]["status"] == "assigned"

    listed = client.get("/api/v1/user-pet-tag-orders", headers=as_user(user)).get_json()
    assert [o["status"] for o in listed["orders"]] == ["paid"]


def test_order_validation_errors(client):
    user = make_user()
    res = client.post("/api/v1/user-pet-tag-orders", json={"totalCostEuro": 5}, headers=as_user(user))
    assert res.status_code == 400
    assert "petName" in res.get_json()["details"]


def test_verify_then_scan_shows_profile(client, stripe):
    user = make_user()
    pet = make_pet(user)
    code = make_code("QR-0001")

    assert client.get("/api/v1/qrcodes/scan/QR-0001").get_json()["action"] == "redirect_to_verification"

    started = client.post(
        "/api/v1/qrcodes/verify-subscription",
        json={"qrCodeId": code.id, "subscriptionType": "monthly", "amount": 2.75, "currency": "gbp", "petId": pet.id},
        headers=as_user(user),
    ).get_json()
    assert started["paymentRequired"] is True
    pi = started["payment"]["paymentIntentId"]
    stripe.succeed(pi)

    res = client.post(
        "/api/v1/qrcodes/confirm-subscription",
        json={"qrCodeId": code.id, "subscriptionType": "monthly", "paymentIntentId": pi, "amount": 2.75},
        headers=as_user(user),
    )
    assert res.status_code == 200
    assert res.get_json()["qrCode"]["status"] == "verified"
    assert res.get_json()["subscriptionCreated"] is True

    scan = client.get("/api/v1/qrcodes/scan/QR-0001").get_json()
    assert scan["action"] == "redirect_to_profile"
    assert scan["redirectUrl"] == f"/profile/{pet.id}"
    assert scan["scannedCount"] == 2

    profile = client.get(f"/api/v1/qrcodes/pet-profile/{pet.id}")
    assert profile.status_code == 200
    assert profile.get_json()["pet"]["petName"] == "Rex"


def test_confirm_subscription_needs_a_reference(client):
    user = make_user()
    code = make_code("QR-0001")
    res = client.post(
        "/api/v1/qrcodes/confirm-subscription",
        json={"qrCodeId": code.id, "subscriptionType": "monthly"},
        headers=as_user(user),
    )
    assert res.status_code == 400


def test_cap_conflict_is_reported_with_counts(client):
    user = make_user()
    make_subscription(user)
    for i in range(1, 6):
        make_code(f"QR-000{i}", user=user, status="verified")
    sixth = make_code("QR-0006")

    res = client.post("/api/v1/qrcodes/auto-verify", json={"qrCodeId": sixth.id}, headers=as_user(user))
    assert res.status_code == 409
    body = res.get_json()
    assert body["code"] == "QR_CODE_LIMIT_EXCEEDED"
    assert body["verifiedCount"] == 5
    assert body["maxAllowed"] == 5


def test_scan_unknown_code(client):
    assert client.get("/api/v1/qrcodes/scan/QR-NOPE").status_code == 404


def test_qr_image_is_png(client):
    make_code("QR-0001")
    res = client.get("/api/v1/qrcodes/QR-0001/image?size=4")
    assert res.status_code == 200
    assert res.mimetype == "image/png"
    assert res.data[:8] == b"\x89PNG\r\n\x1a\n"


def test_availability_counts_stock(client):
    user = make_user()
    make_codes(3)
    make_code("QR-0100", user=user)
    assert client.get("/api/v1/qrcodes/availability").get_json() == {"available": 3, "hasStock": True}


# ══════════════════════════════════════════════
#  Location sharing
# ══════════════════════════════════════════════

def _verified_pet(phone="447700900123"):
    user = make_user(phone=phone)
    pet = make_pet(user)
    make_code("QR-0001", user=user, pet=pet, status="verified")
    return pet


def test_share_location_by_sms(client, texts):
    pet = _verified_pet()
    res = client.post("/api/v1/qrcodes/share-location", json={
        "petId": pet.id, "method": "sms", "locationUrl": "https://maps.example/?q=1,2",
        "latitude": 51.5, "longitude": -0.12,
    })
    assert res.status_code == 200
    body = res.get_json()
    assert body["messageId"] == "SM0001"
    assert body["phoneNumber"].endswith("0123")
    assert "*" in body["phoneNumber"]
    assert texts[0]["to"] == "+447700900123"
    assert "Rex" in texts[0]["body"]
    assert "51.5, -0.12" in texts[0]["body"]


def test_share_location_get_phone_returns_full_number(client, texts):
    pet = _verified_pet()
    res = client.post("/api/v1/qrcodes/share-location", json={
        "petId": pet.id, "method": "get-phone", "locationUrl": "https://maps.example", "isManualLocation": True,
    })
    assert res.get_json()["phoneNumber"] == "+447700900123"
    assert texts == []


def test_share_location_needs_coordinates_for_gps(client):
    pet = _verified_pet()
    res = client.post("/api/v1/qrcodes/share-location", json={"petId": pet.id, "method": "sms", "locationUrl": "x"})
    assert res.status_code == 400


def test_share_location_rejects_number_without_country_code(client):
    pet = _verified_pet(phone="07700900123")
    res = client.post("/api/v1/qrcodes/share-location", json={
        "petId": pet.id, "method": "whatsapp", "locationUrl": "x", "isManualLocation": True,
    })
    assert res.status_code == 400


def test_share_location_for_unverified_pet_is_not_found(client):
    user = make_user()
    pet = make_pet(user)
    res = client.post("/api/v1/qrcodes/share-location", json={
        "petId": pet.id, "method": "sms", "locationUrl": "x", "isManualLocation": True,
    })
    assert res.status_code == 404


def test_share_location_gateway_failure_is_502(client, monkeypatch):
    pet = _verified_pet()

    def down(to, body, *, channel="sms"):
        raise RuntimeError("Twilio API error (code=21211): invalid number")

    monkeypatch.setattr(contact, "send_message", down)
    res = client.post("/api/v1/qrcodes/share-location", json={
        "petId": pet.id, "method": "sms", "locationUrl": "x", "isManualLocation": True,
    })
    assert res.status_code == 502
    assert "21211" in res.get_json()["details"]


# ══════════════════════════════════════════════
#  Admin
# ══════════════════════════════════════════════

def test_admin_endpoints_reject_regular_users(client):
    user = make_user()
    res = client.put(f"/api/v1/admin/users/{user.id}/loyalty-points", json={"points": 10}, headers=as_user(user))
    assert res.status_code == 403
    assert res.get_json() == {"error": "Admin access required"}


def test_admin_adjusts_points_and_ships_rewards(client):
    admin = make_user("admin@example.com", role="admin")
    user = make_user(points=950)

    res = client.put(
        f"/api/v1/admin/users/{user.id}/loyalty-points",
        json={"points": 50, "action": "add"},
        headers=as_user(admin),
    )
    assert res.status_code == 200
    body = res.get_json()
    assert body["loyaltyPoints"] == 1000
    assert body["newRedemption"]["rewardTier"] == 1

    pending = client.get("/api/v1/admin/redemptions/pending", headers=as_user(admin)).get_json()["redemptions"]
    assert len(pending) == 1

    res = client.put(
        f"/api/v1/admin/redemptions/{pending[0]['id']}/status",
        json={"status": "shipped", "adminNotes": "Royal Mail"},
        headers=as_user(admin),
    )
    assert res.get_json()["redemption"]["status"] == "shipped"

    loyalty = client.get("/api/v1/loyalty", headers=as_user(user)).get_json()
    assert loyalty["currentReward"]["status"] == "shipped"
    assert loyalty["referralLink"].startswith("http://frontend.test/signup?ref=")


@pytest.mark.parametrize("body", [{"points": -1}, {"points": 5, "action": "double"}, {}])
def test_admin_point_adjustment_validation(client, body):
    admin = make_user("admin@example.com", role="admin")
    user = make_user()
    res = client.put(f"/api/v1/admin/users/{user.id}/loyalty-points", json=body, headers=as_user(admin))
    assert res.status_code == 400


def test_admin_generates_and_exports_codes(client):
    admin = make_user("admin@example.com", role="admin")

    res = client.post("/api/v1/admin/qrcodes/generate", json={"count": 2}, headers=as_user(admin))
    assert res.status_code == 201
    codes = res.get_json()["qrCodes"]
    assert len(codes) == 2
    assert all(c["status"] == "unassigned" and c["imageUrl"].startswith("/uploads/") for c in codes)

    export = client.get("/api/v1/admin/qrcodes/export", headers=as_user(admin))
    assert export.mimetype == "text/csv"
    lines = export.data.decode().strip().splitlines()
    assert lines[0] == "id,code,url,image_url,created_at"
    assert len(lines) == 3
    assert QRCode.query.filter_by(is_downloaded=True).count() == 2


def test_admin_cannot_delete_assigned_code(client):
    admin = make_user("admin@example.com", role="admin")
    row = make_code("QR-0001", user=admin)
    assert client.delete(f"/api/v1/admin/qrcodes/{row.id}", headers=as_user(admin)).status_code == 409


# ══════════════════════════════════════════════
#  Stripe webhook
# ══════════════════════════════════════════════

def _post_event(client, event, secret="whsec_test"):
    payload = json.dumps(event).encode()
    return client.post(
        "/api/v1/payments/stripe/webhook",
        data=payload,
        headers={"Stripe-Signature": sign_payload(payload, secret), "Content-Type": "application/json"},
    )


def test_webhook_rejects_bad_signature(client):
    assert _post_event(client, {"type": "invoice.payment_succeeded"}, secret="whsec_wrong").status_code == 400


def test_webhook_records_renewal(client, outbox):
    user = make_user()
    make_subscription(user, "monthly", amount="2.75", stripe_subscription_id="sub_1", auto_renew=True)
    event = {
        "id": "evt_1",
        "type": "invoice.payment_succeeded",
        "data": {"object": {"id": "in_1", "subscription": "sub_1", "billing_reason": "subscription_cycle",
                            "amount_paid": 275, "currency": "gbp", "payment_intent": "pi_renew"}},
    }

    assert _post_event(client, event).status_code == 200
    assert Subscription.query.filter_by(stripe_subscription_id="sub_1", status="active").count() == 1
    assert Subscription.query.filter_by(stripe_subscription_id="sub_1", status="expired").count() == 1
    assert len(outbox) == 1


def test_webhook_ignores_unknown_events(client):
    assert _post_event(client, {"id": "evt_2", "type": "charge.refunded", "data": {"object": {}}}).get_json() == {"received": True}
