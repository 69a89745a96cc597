from marshmallow import fields, validate, validates_schema, ValidationError

from .base import RequestSchema

SUBSCRIPTION_TYPES = ["monthly", "yearly", "lifetime"]


class AutoVerifySchema(RequestSchema):
    qr_code_id = fields.Int(data_key="qrCodeId", required=True)
    pet_id = fields.Int(data_key="petId", allow_none=True)


class VerifySubscriptionSchema(AutoVerifySchema):
    subscription_type = fields.Str(data_key="subscriptionType", required=True, validate=validate.OneOf(SUBSCRIPTION_TYPES))
    amount = fields.Decimal(allow_none=True, places=2)
    currency = fields.Str(allow_none=True, validate=validate.Length(equal=3))
    payment_method_id = fields.Str(data_key="paymentMethodId", allow_none=True)
    auto_renew = fields.Bool(data_key="autoRenew", load_default=True)


class ConfirmSubscriptionSchema(AutoVerifySchema):
    subscription_type = fields.Str(data_key="subscriptionType", required=True, validate=validate.OneOf(SUBSCRIPTION_TYPES))
    payment_intent_id = fields.Str(data_key="paymentIntentId", allow_none=True)
    stripe_subscription_id = fields.Str(data_key="stripeSubscriptionId", allow_none=True)
    amount = fields.Decimal(allow_none=True, places=2)
    currency = fields.Str(allow_none=True, validate=validate.Length(equal=3))

    @validates_schema
    def _reference(self, data, **kwargs):
        if not data.get("payment_intent_id") and not data.get("stripe_subscription_id"):
            raise ValidationError("paymentIntentId or stripeSubscriptionId is required", "paymentIntentId")


class ShareLocationSchema(RequestSchema):
    pet_id = fields.Int(data_key="petId", required=True)
    method = fields.Str(required=True, validate=validate.OneOf(["sms", "whatsapp", "get-phone"]))
    location_url = fields.Str(data_key="locationUrl", required=True, validate=validate.Length(min=1, max=2000))
    latitude = fields.Float(allow_none=True, validate=validate.Range(min=-90, max=90))
    longitude = fields.Float(allow_none=True, validate=validate.Range(min=-180, max=180))
    pet_name = fields.Str(data_key="petName", allow_none=True)
    is_manual_location = fields.Bool(data_key="isManualLocation", load_default=False)


class GenerateCodesSchema(RequestSchema):
    count = fields.Int(load_default=10, validate=validate.Range(min=1, max=500))
