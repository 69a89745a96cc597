from marshmallow import fields, validate

from .base import RequestSchema


class AdjustPointsSchema(RequestSchema):
    points = fields.Int(required=True, strict=False, validate=validate.Range(min=0, error="Points must be a non-negative number"))
    action = fields.Str(load_default="set", validate=validate.OneOf(["set", "add"]))


class RedemptionStatusSchema(RequestSchema):
    status = fields.Str(required=True, validate=validate.OneOf(["pending", "shipped", "completed"]))
    admin_notes = fields.Str(data_key="adminNotes", allow_none=True)
