"""
Base ORM Model, Mixins and Column Types.

============================================================
PURPOSE
============================================================
Provides the declarative base, common mixins and the exact
numeric column types used by all indexer ORM models.

============================================================
COMPONENTS
============================================================
- Base: SQLAlchemy declarative base for all models
- TimestampMixin: Common timestamp columns
- ExactNumeric / Uint256: Lossless on-chain amounts
- BigIntPK / JSONDocument / UTCDateTime: Portable column variants

============================================================
"""

from datetime import datetime, timezone
from decimal import Decimal, localcontext

from sqlalchemy import JSON, BigInteger, DateTime, Integer, Numeric, String, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


# SQLite only autoincrements INTEGER PRIMARY KEY columns.
BigIntPK = BigInteger().with_variant(Integer(), "sqlite")

JSONDocument = JSON().with_variant(JSONB(), "postgresql")


def _to_decimal(value) -> Decimal:
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(repr(value))
    return Decimal(str(value))


class ExactNumeric(TypeDecorator):
    """
    Decimal column that never goes through a float.

    PostgreSQL stores NUMERIC(precision, scale). SQLite has no
    arbitrary precision type, so values are stored as decimal
    text there.
    """

    impl = Numeric
    cache_ok = True

    def __init__(self, precision: int = 78, scale: int = 0):
        super().__init__()
        self.precision = precision
        self.scale = scale

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(Numeric(self.precision, self.scale))
        return dialect.type_descriptor(String(self.precision + 2))

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        value = self._coerce(value)
        if dialect.name == "postgresql":
            return Decimal(value)
        return str(value)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return self._coerce(value)

    def _coerce(self, value):
        with localcontext() as ctx:
            ctx.prec = self.precision + self.scale + 2
            quantum = Decimal(1).scaleb(-self.scale)
            return _to_decimal(value).quantize(quantum)


class Uint256(ExactNumeric):
    """Unsigned 256-bit integer (token amounts, token ids)."""

    cache_ok = True

    def __init__(self):
        super().__init__(precision=78, scale=0)

    def _coerce(self, value):
        number = int(_to_decimal(value))
        if number < 0:
            raise ValueError(f"uint256 value cannot be negative: {number}")
        return number


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware UTC timestamp on every dialect.

    SQLite drops the offset on write and returns naive values;
    those are normalised to UTC here.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        value = value.astimezone(timezone.utc)
        if dialect.name == "sqlite":
            return value.replace(tzinfo=None)
        return value

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class Base(DeclarativeBase):
    """
    Declarative base for all ORM models.

    All indexer tables inherit from this base so a single
    metadata object describes the storage contract.
    """

    type_annotation_map = {
        datetime: UTCDateTime(),
    }


class TimestampMixin:
    """
    Mixin providing standard timestamp columns.

    Usage:
        class MyModel(Base, TimestampMixin):
            __tablename__ = "my_table"
            ...
    """

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
        server_default=func.now(),
        comment="Record creation timestamp (UTC)"
    )

    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
        comment="Last update timestamp (UTC)"
    )
