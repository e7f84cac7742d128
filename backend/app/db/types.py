"""Portable column types.

Production runs on PostgreSQL (asyncpg); tests run on SQLite (aiosqlite).
"""
from sqlalchemy import JSON, Numeric, Uuid
from sqlalchemy.dialects.postgresql import JSONB

# Native UUID on PostgreSQL, CHAR(32) elsewhere.
UUIDType = Uuid(as_uuid=True)

# JSONB on PostgreSQL, JSON elsewhere.
JSONType = JSON().with_variant(JSONB(), "postgresql")

# Money in major units (dollars) with cents precision.
Money = Numeric(12, 2, asdecimal=True)

# Percent numbers, e.g. 2.500 == 2.5%.
Percent = Numeric(6, 3, asdecimal=True)
