from marshmallow import fields, validate

from .accounts import AddressMixin
from .base import RequestSchema


class UserPetTagOrderSchema(AddressMixin, RequestSchema):
    pet_name = fields.Str(data_key="petName", required=True, validate=validate.Length(min=1, max=120))
    quantity = fields.Int(load_default=1, validate=validate.Range(min=1, max=10))
    total_cost_euro = fields.Decimal(data_key="totalCostEuro", required=True, places=2, as_string=False,
                                     validate=validate.Range(min=0, min_inclusive=False))
    tag_color = fields.Str(data_key="tagColor", allow_none=True, validate=validate.Length(max=40))
    phone = fields.Str(allow_none=True, validate=validate.Length(max=40))


class ReplacementOrderSchema(AddressMixin, RequestSchema):
    tag_color = fields.Str(data_key="tagColor", allow_none=True, validate=validate.Length(max=40))
    phone = fields.Str(allow_none=True, validate=validate.Length(max=40))


class GuestOrderSchema(RequestSchema):
    email = fields.Email(required=True)
    name = fields.Str(required=True, validate=validate.Length(min=1, max=255))
    pet_name = fields.Str(data_key="petName", required=True, validate=validate.Length(min=1, max=120))
    quantity = fields.Int(load_default=1, validate=validate.Range(min=1, max=10))
    subscription_type = fields.Str(data_key="subscriptionType", load_default="monthly",
                                   validate=validate.OneOf(["monthly", "yearly"]))
    price = fields.Decimal(required=True, places=2, validate=validate.Range(min=0, min_inclusive=False))
    phone = fields.Str(allow_none=True, validate=validate.Length(max=40))
    shipping_address = fields.Dict(data_key="shippingAddress", allow_none=True)


class ConfirmPaymentSchema(RequestSchema):
    payment_intent_id = fields.Str(data_key="paymentIntentId", allow_none=True)
