"""
Tests for the order provisioning pipeline.

Covers:
- Standard orders: pet creation and tag claim after payment
- Replacement orders: tag swap on an existing pet
- Failed payments and repeated confirmations
- Guest checkout orders
"""
import pytest

from pettags.errors import NotFoundError, ValidationError
from pettags.extensions import db
from pettags.models.order import PetTagOrder, UserPetTagOrder
from pettags.models.pet import Pet
from pettags.models.qr_code import QRCode
from pettags.modules.orders import provisioning

from factories import make_code, make_codes, make_pet, make_user


def _order_data(**overrides):
    data = {"pet_name": "Rex", "total_cost_euro": "19.99", "quantity": 1, "tag_color": "red"}
    data.update(overrides)
    return data


def _code_of(pet):
    return QRCode.query.filter(QRCode.assigned_pet_id == pet.id, QRCode.status != "unassigned").one()


# ══════════════════════════════════════════════
#  Standard orders
# ══════════════════════════════════════════════

def test_paid_order_creates_pet_and_claims_a_tag(app, stripe, outbox):
    user = make_user(city="York")
    make_codes(2)
    order, intent = provisioning.create_user_order(user, _order_data())
    assert order.payment_intent_id == intent["id"]
    assert order.city == "York"
    stripe.succeed(intent["id"])

    outcome = provisioning.confirm_user_order(user.id, order.id)

    pet = outcome["pet"]
    assert pet.pet_name == "Rex"
    assert pet.order_type == "UserPetTagOrder"
    assert pet.user_pet_tag_order_id == order.id
    code = outcome["qr_code"]
    assert code.status == "assigned"
    assert code.has_verified is False
    assert code.assigned_pet_id == pet.id
    assert code.assigned_order_id == order.id
    assert order.status == "paid"
    assert order.payment_status == "succeeded"
    assert len(outbox) == 1


def test_confirming_twice_does_not_duplicate(app, stripe, outbox):
    user = make_user()
    make_codes(3)
    order, intent = provisioning.create_user_order(user, _order_data())
    stripe.succeed(intent["id"])

    first = provisioning.confirm_user_order(user.id, order.id, intent["id"])
    second = provisioning.confirm_user_order(user.id, order.id, intent["id"])

    assert first["pet"].id == second["pet"].id
    assert first["qr_code"].id == second["qr_code"].id
    assert Pet.query.count() == 1
    assert QRCode.query.filter_by(status="assigned").count() == 1
    assert len(outbox) == 1


def test_failed_payment_only_flags_the_order(app, stripe):
    user = make_user()
    make_codes(1)
    order, intent = provisioning.create_user_order(user, _order_data())
    stripe.fail(intent["id"])

    outcome = provisioning.confirm_user_order(user.id, order.id)

    assert outcome["pet"] is None
    assert order.payment_status == "failed"
    assert order.status == "pending"
    assert Pet.query.count() == 0
    assert QRCode.query.filter_by(status="unassigned").count() == 1


def test_paid_order_without_stock_still_creates_pet(app, stripe):
    user = make_user()
    order, intent = provisioning.create_user_order(user, _order_data())
    stripe.succeed(intent["id"])

    outcome = provisioning.confirm_user_order(user.id, order.id)
    assert outcome["pet"] is not None
    assert outcome["qr_code"] is None


def test_pet_limit_blocks_new_orders(app):
    user = make_user()
    for i in range(5):
        make_pet(user, f"Pet {i}")
    with pytest.raises(ValidationError):
        provisioning.create_user_order(user, _order_data())
    assert UserPetTagOrder.query.count() == 0


def test_foreign_payment_intent_is_rejected(app, stripe):
    user = make_user()
    order, _ = provisioning.create_user_order(user, _order_data())
    stripe.succeed("pi_other")
    with pytest.raises(ValidationError):
        provisioning.confirm_user_order(user.id, order.id, "pi_other")


def test_orders_of_other_users_are_not_found(app):
    owner = make_user("owner@example.com")
    other = make_user("other@example.com")
    order, _ = provisioning.create_user_order(owner, _order_data())
    with pytest.raises(NotFoundError):
        provisioning.confirm_user_order(other.id, order.id)


# ══════════════════════════════════════════════
#  Replacement orders
# ══════════════════════════════════════════════

def test_replacement_swaps_verified_tag_for_a_fresh_one(app, stripe):
    user = make_user()
    rex = make_pet(user, "Rex", order_id=1)
    old = make_code("QR-0003", user=user, pet=rex, status="verified", order_id=1)
    make_code("QR-0099")

    order, intent = provisioning.create_replacement_order(user, rex.id, {})
    assert float(order.total_cost_euro) == 2.95
    assert stripe.intents[intent["id"]]["currency"] == "eur"
    stripe.succeed(intent["id"])

    outcome = provisioning.confirm_user_order(user.id, order.id, replacement=True)

    assert outcome["revoked_codes"] == ["QR-0003"]
    new = outcome["qr_code"]
    assert new.code == "QR-0099"
    assert new.status == "assigned"
    assert new.has_verified is False
    assert new.assigned_pet_id == rex.id
    db.session.refresh(old)
    assert old.status == "unassigned"
    assert old.assigned_user_id is None
    assert old.assigned_pet_id is None
    assert old.assigned_order_id is None
    assert old.has_given is False
    assert old.has_verified is False
    db.session.refresh(rex)
    assert rex.user_pet_tag_order_id == order.id
    assert rex.order_type == "UserPetTagOrder"
    assert order.issued_qr_code_id == new.id
    assert Pet.query.count() == 1


def test_replacement_after_guest_order_with_the_same_id(app, stripe):
    user = make_user("guest@example.com")
    make_codes(2)
    guest, guest_intent = provisioning.create_guest_order(_guest_data(pet_name="Rex"))
    stripe.succeed(guest_intent["id"])
    rex = provisioning.confirm_guest_order(guest.id)["pet"]
    assert _code_of(rex).code == "QR-0001"

    order, intent = provisioning.create_replacement_order(user, rex.id, {})
    assert order.id == guest.id
    stripe.succeed(intent["id"])
    outcome = provisioning.confirm_user_order(user.id, order.id, replacement=True)

    assert outcome["revoked_codes"] == ["QR-0001"]
    assert outcome["qr_code"].code == "QR-0002"
    assert outcome["qr_code"].assigned_order_type == "UserPetTagOrder"
    db.session.refresh(rex)
    assert rex.user_pet_tag_order_id == order.id
    assert rex.order_type == "UserPetTagOrder"
    assert QRCode.query.filter_by(code="QR-0001").one().status == "unassigned"


def test_replacement_confirmation_is_idempotent(app, stripe):
    user = make_user()
    rex = make_pet(user, "Rex")
    make_code("QR-0003", user=user, pet=rex, status="verified")
    make_code("QR-0098")
    make_code("QR-0099")
    order, intent = provisioning.create_replacement_order(user, rex.id, {})
    stripe.succeed(intent["id"])

    first = provisioning.confirm_user_order(user.id, order.id, replacement=True)
    second = provisioning.confirm_user_order(user.id, order.id, replacement=True)

    assert second["qr_code"].id == first["qr_code"].id
    assert second["revoked_codes"] == []
    assert QRCode.query.filter_by(assigned_pet_id=rex.id).count() == 1


def test_replacement_for_pet_matched_by_name(app, stripe):
    user = make_user()
    rex = make_pet(user, "Rex")
    make_code("QR-0003", user=user, pet=rex)
    make_code("QR-0099")
    order = UserPetTagOrder(user_id=user.id, pet_name="Rex", total_cost_euro=2.95, is_replacement=True, payment_intent_id="pi_r")
    db.session.add(order)
    db.session.commit()
    stripe.succeed("pi_r")

    outcome = provisioning.confirm_user_order(user.id, order.id)
    assert outcome["pet"].id == rex.id
    assert outcome["qr_code"].code == "QR-0099"


def test_replacement_for_missing_pet_is_not_found(app, stripe):
    user = make_user()
    order = UserPetTagOrder(user_id=user.id, pet_name="Ghost", total_cost_euro=2.95, is_replacement=True, payment_intent_id="pi_g")
    db.session.add(order)
    db.session.commit()
    stripe.succeed("pi_g")
    with pytest.raises(NotFoundError):
        provisioning.confirm_user_order(user.id, order.id)


def test_replacement_ignores_pet_limit(app):
    user = make_user()
    pets = [make_pet(user, f"Pet {i}") for i in range(5)]
    order, _ = provisioning.create_replacement_order(user, pets[0].id, {})
    assert order.is_replacement is True


# ══════════════════════════════════════════════
#  Guest checkout
# ══════════════════════════════════════════════

def _guest_data(**overrides):
    data = {"email": "Guest@Example.com", "name": "Gus Guest", "pet_name": "Milo", "price": "24.99", "subscription_type": "yearly", "phone": "+447700900999"}
    data.update(overrides)
    return data


def test_guest_order_without_account_only_marks_paid(app, stripe, outbox):
    order, intent = provisioning.create_guest_order(_guest_data())
    assert order.email == "guest@example.com"
    stripe.succeed(intent["id"])

    outcome = provisioning.confirm_guest_order(order.id)
    assert outcome["pet"] is None
    assert order.status == "paid"
    assert outbox[0][0] == "guest@example.com"


def test_guest_order_provisions_pet_for_matching_account(app, stripe):
    user = make_user("guest@example.com")
    make_codes(1)
    order, intent = provisioning.create_guest_order(_guest_data())
    stripe.succeed(intent["id"])

    outcome = provisioning.confirm_guest_order(order.id)
    pet = outcome["pet"]
    assert pet.user_id == user.id
    assert pet.order_type == "PetTagOrder"
    assert outcome["qr_code"].assigned_pet_id == pet.id
    assert PetTagOrder.query.one().payment_status == "succeeded"


def test_unsupported_order_type_is_rejected(app):
    with pytest.raises(TypeError):
        provisioning.on_payment_confirmed(object())
