from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

# SQLite only autoincrements INTEGER PRIMARY KEY columns.
BigIntPK = BigInteger().with_variant(Integer, 'sqlite')
Quantity = Numeric(14, 3)


def utc_now() -> datetime:
    return datetime.now(tz=timezone.utc)


class Base(DeclarativeBase):
    pass


class PurchaseUnit(str, Enum):
    BOX = 'BOX'
    BUCKET = 'BUCKET'
    BARREL = 'BARREL'


class StockLocation(str, Enum):
    SHELF = 'SHELF'
    LINE = 'LINE'


class ActivityType(str, Enum):
    PICKUP = 'PICKUP'
    UPDATE = 'UPDATE'
    REQUEST = 'REQUEST'


class UsageEventType(str, Enum):
    PICKUP = 'PICKUP'


class RequestBatchStatus(str, Enum):
    OPEN = 'OPEN'
    FULFILLED = 'FULFILLED'


class Chemical(Base):
    __tablename__ = 'chemicals'
    __table_args__ = (
        CheckConstraint('increment > 0', name='chemicals_increment_positive_ck'),
        CheckConstraint(
            'gallons_per_unit IS NULL OR gallons_per_unit > 0',
            name='chemicals_gallons_per_unit_positive_ck',
        ),
        CheckConstraint('track_on_shelf OR track_on_line', name='chemicals_tracked_somewhere_ck'),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    unit: Mapped[PurchaseUnit] = mapped_column(SQLEnum(PurchaseUnit, name='purchase_unit'), nullable=False)
    increment: Mapped[Decimal] = mapped_column(Numeric(8, 3), nullable=False)
    gallons_per_unit: Mapped[Decimal | None] = mapped_column(Numeric(10, 3))
    track_on_shelf: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default='true')
    track_on_line: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default='false')
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default='true')
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, server_default=func.now()
    )

    inventory: Mapped[InventoryState | None] = relationship(back_populates='chemical', uselist=False)


class InventoryState(Base):
    __tablename__ = 'inventory_states'
    __table_args__ = (
        UniqueConstraint('chemical_id', name='inventory_states_chemical_id_key'),
        CheckConstraint('shelf_qty >= 0', name='inventory_states_shelf_non_negative_ck'),
        CheckConstraint('line_qty >= 0', name='inventory_states_line_non_negative_ck'),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    chemical_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('chemicals.id'), nullable=False)
    shelf_qty: Mapped[Decimal] = mapped_column(Quantity, nullable=False, default=Decimal('0'), server_default='0')
    line_qty: Mapped[Decimal] = mapped_column(Quantity, nullable=False, default=Decimal('0'), server_default='0')
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, server_default=func.now()
    )

    chemical: Mapped[Chemical] = relationship(back_populates='inventory')


class ActivityLog(Base):
    __tablename__ = 'activity_logs'
    __table_args__ = (
        Index('activity_logs_created_at_idx', 'created_at'),
        Index('activity_logs_batch_id_idx', 'batch_id'),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    type: Mapped[ActivityType] = mapped_column(SQLEnum(ActivityType, name='activity_type'), nullable=False)
    chemical_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('chemicals.id'), nullable=False)
    location: Mapped[StockLocation | None] = mapped_column(SQLEnum(StockLocation, name='stock_location'))
    set_qty: Mapped[Decimal | None] = mapped_column(Quantity)
    add_qty: Mapped[Decimal | None] = mapped_column(Quantity)
    request_qty: Mapped[Decimal | None] = mapped_column(Quantity)
    note: Mapped[str | None] = mapped_column(Text)
    batch_id: Mapped[str | None] = mapped_column(String(36))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, server_default=func.now()
    )

    chemical: Mapped[Chemical] = relationship()


class UsageHistory(Base):
    __tablename__ = 'usage_history'
    __table_args__ = (
        Index('usage_history_recorded_at_idx', 'recorded_at'),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    chemical_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('chemicals.id'), nullable=False)
    chemical_name: Mapped[str] = mapped_column(Text, nullable=False)
    event_type: Mapped[UsageEventType] = mapped_column(
        SQLEnum(UsageEventType, name='usage_event_type'), nullable=False
    )
    quantity_gallons: Mapped[Decimal] = mapped_column(Quantity, nullable=False)
    quantity_units: Mapped[Decimal] = mapped_column(Quantity, nullable=False)
    unit: Mapped[PurchaseUnit] = mapped_column(SQLEnum(PurchaseUnit, name='purchase_unit'), nullable=False)
    location: Mapped[StockLocation] = mapped_column(SQLEnum(StockLocation, name='stock_location'), nullable=False)
    cost_per_unit: Mapped[Decimal | None] = mapped_column(Numeric(12, 2))
    total_cost: Mapped[Decimal | None] = mapped_column(Numeric(12, 2))
    note: Mapped[str | None] = mapped_column(Text)
    recorded_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, server_default=func.now()
    )


class RequestBatch(Base):
    __tablename__ = 'request_batches'
    __table_args__ = (
        # At most one OPEN batch at a time.
        Index(
            'request_batches_single_open_uniq',
            'status',
            unique=True,
            postgresql_where=text("status = 'OPEN'"),
            sqlite_where=text("status = 'OPEN'"),
        ),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    status: Mapped[RequestBatchStatus] = mapped_column(
        SQLEnum(RequestBatchStatus, name='request_batch_status'),
        nullable=False,
        default=RequestBatchStatus.OPEN,
        server_default='OPEN',
    )
    note: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, server_default=func.now()
    )
    fulfilled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    items: Mapped[list[RequestItem]] = relationship(
        back_populates='batch', order_by='RequestItem.id', cascade='all, delete-orphan'
    )


class RequestItem(Base):
    __tablename__ = 'request_items'
    __table_args__ = (
        UniqueConstraint('batch_id', 'chemical_id', name='request_items_batch_chemical_uniq'),
        CheckConstraint('requested_qty >= 0', name='request_items_requested_non_negative_ck'),
        CheckConstraint('picked_up_qty >= 0', name='request_items_picked_up_non_negative_ck'),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    batch_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey('request_batches.id', ondelete='CASCADE'), nullable=False
    )
    chemical_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('chemicals.id'), nullable=False)
    requested_qty: Mapped[Decimal] = mapped_column(Quantity, nullable=False)
    picked_up_qty: Mapped[Decimal] = mapped_column(Quantity, nullable=False, default=Decimal('0'), server_default='0')

    batch: Mapped[RequestBatch] = relationship(back_populates='items')
    chemical: Mapped[Chemical] = relationship()
