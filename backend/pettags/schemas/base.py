from marshmallow import EXCLUDE, Schema


class RequestSchema(Schema):
    """Request body schema: camelCase keys in, snake_case dict out; unknown keys ignored."""

    class Meta:
        unknown = EXCLUDE
