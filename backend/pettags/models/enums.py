from sqlalchemy import BigInteger, Enum, Integer

# Enum types mapped for SQLAlchemy. Named so Alembic emits CREATE TYPE on Postgres;
# other dialects fall back to VARCHAR columns.

role_enum = Enum("user", "admin", name="role_enum")
qr_status_enum = Enum("unassigned", "assigned", "verified", "lost", "revoked", name="qr_status_enum")
subscription_type_enum = Enum("monthly", "yearly", "lifetime", name="subscription_type_enum")
subscription_status_enum = Enum("active", "expired", "cancelled", name="subscription_status_enum")
order_status_enum = Enum("pending", "paid", "shipped", "delivered", "cancelled", name="order_status_enum")
payment_status_enum = Enum("pending", "succeeded", "failed", "cancelled", name="payment_status_enum")
order_type_enum = Enum("UserPetTagOrder", "PetTagOrder", name="order_type_enum")
redemption_status_enum = Enum("pending", "shipped", "completed", name="redemption_status_enum")

# SQLite only auto-increments INTEGER PRIMARY KEY columns
id_type = BigInteger().with_variant(Integer(), "sqlite")

MAX_CODES_PER_SUBSCRIPTION = 5
MAX_PETS_PER_USER = 5
