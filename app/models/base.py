from datetime import datetime, UTC
from sqlalchemy import MetaData, DateTime, Enum as SQLAEnum
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, declared_attr

# Stable constraint names so SQLite and Postgres schemas line up
metadata = MetaData(naming_convention={
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
})

def utcnow() -> datetime:
    return datetime.now(UTC)

class Base(DeclarativeBase):
    """Every table carries created/updated timestamps in UTC."""
    metadata = metadata

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    @declared_attr.directive
    def __tablename__(cls) -> str:
        return cls.__name__.lower()

def enum_type(enum_cls: type) -> SQLAEnum:
    """Store enum values (not member names) as plain strings."""
    return SQLAEnum(
        enum_cls,
        values_callable=lambda members: [member.value for member in members],
        native_enum=False,
        validate_strings=True,
        length=32,
    )
