"""
Tests for tag verification against subscription coverage.

Covers:
- Paid verification of a first tag (payment intent and recurring subscription)
- Auto-verification of further tags from existing coverage
- The five-tag cap per subscription
- Idempotent payment confirmation
"""
import pytest

from pettags.errors import ConflictError, ValidationError
from pettags.extensions import db
from pettags.models.qr_code import QRCode
from pettags.models.subscription import Subscription
from pettags.modules.qrcodes import registry, verification

from factories import make_code, make_codes, make_pet, make_subscription, make_user


def _buy_monthly(user, code, stripe):
    started = verification.start_verification(user, code.id, "monthly", amount="2.75", currency="gbp")
    pi = started["payment"]["paymentIntentId"]
    stripe.succeed(pi)
    return verification.confirm_verification(
        user, code.id, "monthly", payment_intent_id=pi, amount="2.75", currency="gbp"
    )


# ══════════════════════════════════════════════
#  Paid verification
# ══════════════════════════════════════════════

def test_first_tag_requires_payment(app, stripe):
    user = make_user()
    code = make_code("QR-0001")

    started = verification.start_verification(user, code.id, "monthly", amount="2.75", currency="gbp")

    assert started["payment_required"] is True
    assert started["payment"]["kind"] == "payment_intent"
    assert started["payment"]["clientSecret"]
    assert code.status == "assigned"
    assert Subscription.query.count() == 0


def test_new_user_buys_monthly_and_verifies_first_tag(app, stripe, outbox):
    user = make_user()
    code = make_code("QR-0001")

    result = _buy_monthly(user, code, stripe)

    assert result["subscription_created"] is True
    subs = Subscription.query.all()
    assert len(subs) == 1
    assert subs[0].status == "active"
    assert subs[0].type == "monthly"
    assert float(subs[0].amount_paid) == 2.75
    assert subs[0].currency == "gbp"
    db.session.refresh(code)
    assert code.status == "verified"
    assert code.has_verified is True
    assert registry.verified_count(user.id) == 1
    assert any(to == user.email for to, _, _ in outbox)


def test_confirm_rejects_unpaid_intent(app, stripe):
    user = make_user()
    code = make_code("QR-0001")
    started = verification.start_verification(user, code.id, "yearly")
    pi = started["payment"]["paymentIntentId"]

    with pytest.raises(ValidationError):
        verification.confirm_verification(user, code.id, "yearly", payment_intent_id=pi)
    assert Subscription.query.count() == 0
    db.session.refresh(code)
    assert code.status == "assigned"


def test_confirming_same_payment_twice_keeps_one_subscription(app, stripe):
    user = make_user()
    code = make_code("QR-0001")
    first = _buy_monthly(user, code, stripe)
    pi = first["subscription"].payment_intent_id

    again = verification.confirm_verification(
        user, code.id, "monthly", payment_intent_id=pi, amount="2.75", currency="gbp"
    )

    assert again["subscription_created"] is False
    assert again["already_verified"] is True
    assert Subscription.query.count() == 1
    assert again["subscription"].id == first["subscription"].id


def test_recurring_plan_uses_stripe_subscription(app, stripe):
    user = make_user()
    code = make_code("QR-0001")

    started = verification.start_verification(
        user, code.id, "yearly", amount="28.99", payment_method_id="pm_card", auto_renew=True
    )
    assert started["payment"]["kind"] == "subscription"
    sid = started["payment"]["subscriptionId"]
    stripe.activate(sid)

    result = verification.confirm_verification(user, code.id, "yearly", stripe_subscription_id=sid, amount="28.99")
    assert result["subscription"].auto_renew is True
    assert result["subscription"].stripe_subscription_id == sid
    assert result["qr_code"].status == "verified"


def test_lifetime_plan_never_auto_renews(app, stripe):
    user = make_user()
    code = make_code("QR-0001")
    started = verification.start_verification(user, code.id, "lifetime", payment_method_id="pm_card")
    assert started["payment"]["kind"] == "payment_intent"
    assert float(started["amount"]) == 129.99


# ══════════════════════════════════════════════
#  Coverage and the five-tag cap
# ══════════════════════════════════════════════

def test_further_tags_verify_without_new_payment(app, stripe):
    user = make_user()
    codes = make_codes(6)
    _buy_monthly(user, codes[0], stripe)

    for code in codes[1:5]:
        result = verification.start_verification(user, code.id, "monthly")
        assert result["verified"] is True
        assert result["payment_required"] is False
        assert "payment" not in result

    assert registry.verified_count(user.id) == 5
    assert Subscription.query.count() == 1
    assert not stripe.intents.keys() - {Subscription.query.one().payment_intent_id}

    with pytest.raises(ConflictError) as exc:
        verification.start_verification(user, codes[5].id, "monthly")
    assert exc.value.extra["code"] == "QR_CODE_LIMIT_EXCEEDED"
    assert exc.value.extra["verifiedCount"] == 5
    assert exc.value.extra["maxAllowed"] == 5


def test_sixth_verification_mutates_nothing(app):
    user = make_user()
    make_subscription(user)
    for i in range(1, 6):
        make_code(f"QR-000{i}", user=user, status="verified")
    sixth = make_code("QR-0006", user=user)

    with pytest.raises(ConflictError):
        registry.verify_or_auto_verify(user.id, sixth.id)

    db.session.refresh(sixth)
    assert sixth.status == "assigned"
    assert sixth.has_verified is False
    assert QRCode.query.filter_by(assigned_user_id=user.id, status="verified").count() == 5


def test_sixth_verification_leaves_stock_code_in_stock(app):
    user = make_user()
    make_subscription(user)
    for i in range(1, 6):
        make_code(f"QR-000{i}", user=user, status="verified")
    spare = make_pet(user, "Spare")
    sixth = make_code("QR-0006")

    with pytest.raises(ConflictError) as exc:
        registry.verify_or_auto_verify(user.id, sixth.id)
    assert exc.value.extra["code"] == "QR_CODE_LIMIT_EXCEEDED"

    db.session.refresh(sixth)
    assert sixth.status == "unassigned"
    assert sixth.has_given is False
    assert sixth.assigned_user_id is None
    assert sixth.assigned_pet_id is None
    assert registry.pick_unlinked_pet(user.id).id == spare.id


def test_paid_confirmation_over_cap_still_records_payment(app, stripe):
    user = make_user()
    for i in range(1, 6):
        make_code(f"QR-000{i}", user=user, status="verified")
    sixth = make_code("QR-0006", user=user)
    stripe.succeed("pi_extra")

    with pytest.raises(ConflictError):
        verification.confirm_verification(user, sixth.id, "monthly", payment_intent_id="pi_extra")
    assert Subscription.query.filter_by(payment_intent_id="pi_extra").count() == 1
    db.session.refresh(sixth)
    assert sixth.status == "assigned"


def test_auto_verify_without_coverage_is_rejected(app):
    user = make_user()
    code = make_code("QR-0001")
    with pytest.raises(ValidationError) as exc:
        verification.auto_verify(user, code.id)
    assert exc.value.extra["code"] == "SUBSCRIPTION_REQUIRED"


def test_auto_verify_links_pet_and_sends_activation_email(app, outbox):
    user = make_user()
    pet = make_pet(user)
    make_subscription(user)
    code = make_code("QR-0001")

    result = verification.auto_verify(user, code.id, pet.id)

    assert result["verified"] is True
    assert result["qr_code"].assigned_pet_id == pet.id
    assert len(outbox) == 1
    assert "Rex" in outbox[0][2]


def test_email_failure_does_not_block_verification(app, monkeypatch):
    from pettags.modules.notifications import mailer

    def boom(to, subject, html):
        raise RuntimeError("SendGrid down")

    monkeypatch.setattr(mailer, "send_email", boom)
    user = make_user()
    make_subscription(user)
    code = make_code("QR-0001")

    result = verification.auto_verify(user, code.id)
    assert result["qr_code"].status == "verified"


def test_verification_details_for_covered_viewer(app):
    user = make_user()
    make_subscription(user)
    code = make_code("QR-0001")

    details = registry.verification_details("QR-0001", user.id)
    assert details["isVerified"] is False
    assert details["canAutoVerify"] is True
    assert details["requiresLogin"] is False

    anonymous = registry.verification_details(code.code)
    assert anonymous["requiresLogin"] is True
    assert anonymous["canAutoVerify"] is False
