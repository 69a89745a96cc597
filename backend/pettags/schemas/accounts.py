from marshmallow import fields, validate, pre_load

from .base import RequestSchema


def _strip(data: dict) -> dict:
    return {k: (v.strip() if isinstance(v, str) else v) for k, v in (data or {}).items()}


class AddressMixin:
    street = fields.Str(allow_none=True, validate=validate.Length(max=255))
    city = fields.Str(allow_none=True, validate=validate.Length(max=120))
    state = fields.Str(allow_none=True, validate=validate.Length(max=120))
    zip_code = fields.Str(data_key="zipCode", allow_none=True, validate=validate.Length(max=40))
    country = fields.Str(allow_none=True, validate=validate.Length(max=120))


class RegisterSchema(AddressMixin, RequestSchema):
    email = fields.Email(required=True)
    password = fields.Str(required=True, load_only=True, validate=validate.Length(min=8, error="Password must be at least 8 characters"))
    first_name = fields.Str(data_key="firstName", required=True, validate=validate.Length(min=1, max=120))
    last_name = fields.Str(data_key="lastName", required=True, validate=validate.Length(min=1, max=120))
    phone = fields.Str(allow_none=True, validate=validate.Length(max=40))
    referral_code = fields.Str(data_key="referralCode", allow_none=True)

    @pre_load
    def _normalize(self, data, **kwargs):
        data = _strip(data)
        if isinstance(data.get("email"), str):
            data["email"] = data["email"].lower()
        return data


class UserUpdateSchema(AddressMixin, RequestSchema):
    first_name = fields.Str(data_key="firstName", validate=validate.Length(min=1, max=120))
    last_name = fields.Str(data_key="lastName", validate=validate.Length(min=1, max=120))
    phone = fields.Str(allow_none=True, validate=validate.Length(max=40))

    @pre_load
    def _normalize(self, data, **kwargs):
        return _strip(data)


class PetUpdateSchema(RequestSchema):
    pet_name = fields.Str(data_key="petName", validate=validate.Length(min=1, max=120))
    hide_name = fields.Bool(data_key="hideName")
    age = fields.Int(allow_none=True, validate=validate.Range(min=0, max=30))
    breed = fields.Str(allow_none=True, validate=validate.Length(max=120))
    medication = fields.Str(allow_none=True)
    allergies = fields.Str(allow_none=True)
    notes = fields.Str(allow_none=True)

    @pre_load
    def _normalize(self, data, **kwargs):
        return _strip(data)
