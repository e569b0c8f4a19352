"""
Column types shared by the models.

Production runs on PostgreSQL; the test suite runs on SQLite, so the
dialect-specific types carry a SQLite variant.
"""
from sqlalchemy import JSON, BigInteger, Integer
from sqlalchemy.dialects.postgresql import JSONB

# SQLite only autoincrements INTEGER PRIMARY KEY columns
BigIntId = BigInteger().with_variant(Integer(), "sqlite")

JSONType = JSON().with_variant(JSONB(), "postgresql")
