from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    TypeDecorator,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from queuepoint.services.customizations import Customization, RawLabel, decode_customizations

# SQLite only autoincrements INTEGER PRIMARY KEY columns.
IdType = BigInteger().with_variant(Integer(), 'sqlite')


class Base(DeclarativeBase):
    pass


class CustomizationList(TypeDecorator):
    """Stored as a JSON array of serialized strings, loaded as NamedOption/RawLabel values."""

    impl = JSON
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return []
        return [(RawLabel(item) if isinstance(item, str) else item).encode() for item in value]

    def process_result_value(self, value, dialect):
        return decode_customizations(value)


class PrincipalRole(str, Enum):
    ADMIN = 'ADMIN'
    STAFF = 'STAFF'


class OrderStatus(str, Enum):
    PENDING = 'pending'
    PREPARING = 'preparing'
    READY = 'ready'
    COMPLETED = 'completed'


class InventoryUnit(str, Enum):
    PCS = 'pcs'
    KG = 'kg'
    G = 'g'
    L = 'l'
    ML = 'ml'
    PACK = 'pack'


class StockAdjustmentReason(str, Enum):
    RECEIVE = 'receive'
    USAGE = 'usage'
    SPOILAGE = 'spoilage'
    ADJUSTMENT = 'adjustment'


class PcStatus(str, Enum):
    OFFLINE = 'offline'
    ONLINE = 'online'
    PENDING = 'pending'
    MAINTENANCE = 'maintenance'


class TerminalSessionStatus(str, Enum):
    PENDING = 'pending'
    ACTIVE = 'active'
    ENDED = 'ended'
    REJECTED = 'rejected'


class DetectedIpStatus(str, Enum):
    PENDING = 'pending'
    APPROVED = 'approved'
    REGISTERED = 'registered'
    IGNORED = 'ignored'


class LoginAttemptType(str, Enum):
    ADMIN = 'admin'
    STAFF = 'staff'


class FeedbackStatus(str, Enum):
    NEW = 'new'
    REVIEWED = 'reviewed'
    ARCHIVED = 'archived'


class Principal(Base):
    __tablename__ = 'principals'

    id: Mapped[int] = mapped_column(IdType, primary_key=True)
    email: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    password_hash: Mapped[str] = mapped_column(Text, nullable=False)
    role: Mapped[PrincipalRole] = mapped_column(SQLEnum(PrincipalRole, name='principal_role'), nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default='true')
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class WebSession(Base):
    __tablename__ = 'web_sessions'
    __table_args__ = (
        UniqueConstraint('session_token', name='web_sessions_session_token_key'),
    )

    id: Mapped[int] = mapped_column(IdType, primary_key=True)
    session_token: Mapped[str] = mapped_column(String(128), nullable=False)
    principal_id: Mapped[int] = mapped_column(IdType, ForeignKey('principals.id'), nullable=False)
    ip: Mapped[str | None] = mapped_column(String(45))
    user_agent: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    last_seen_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    revoked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))


class AuditLog(Base):
    __tablename__ = 'audit_log'

    id: Mapped[int] = mapped_column(IdType, primary_key=True)
    actor_principal_id: Mapped[int | None] = mapped_column(IdType, ForeignKey('principals.id'))
    action: Mapped[str] = mapped_column(Text, nullable=False)
    ip: Mapped[str | None] = mapped_column(String(45))
    meta: Mapped[dict] = mapped_column('metadata', JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class MenuItem(Base):
    __tablename__ = 'menu_items'

    id: Mapped[int] = mapped_column(IdType, primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default='', server_default='')
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    category: Mapped[str] = mapped_column(Text, nullable=False)
    available: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default='true')
    # [{"name": "Extra Cheese", "price": "10.00"}, ...]
    customization_options: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    # NULL means unlimited.
    quantity: Mapped[int | None] = mapped_column(Integer)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class OrderCounter(Base):
    __tablename__ = 'order_counters'

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    last_number: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class Order(Base):
    __tablename__ = 'orders'
    __table_args__ = (
        UniqueConstraint('order_number', name='orders_order_number_key'),
    )

    id: Mapped[int] = mapped_column(IdType, primary_key=True)
    order_number: Mapped[int] = mapped_column(Integer, nullable=False)
    terminal: Mapped[str] = mapped_column(Text, nullable=False)
    customer_name: Mapped[str | None] = mapped_column(Text)
    total: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    status: Mapped[OrderStatus] = mapped_column(
        SQLEnum(OrderStatus, name='order_status'), nullable=False, default=OrderStatus.PENDING, server_default='PENDING'
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    items: Mapped[list[OrderItem]] = relationship(
        back_populates='order',
        cascade='all, delete-orphan',
        order_by='OrderItem.id',
        lazy='selectin',
    )


class OrderItem(Base):
    __tablename__ = 'order_items'
    __table_args__ = (
        CheckConstraint('quantity > 0', name='order_items_positive_quantity_ck'),
    )

    id: Mapped[int] = mapped_column(IdType, primary_key=True)
    order_id: Mapped[int] = mapped_column(IdType, ForeignKey('orders.id', ondelete='CASCADE'), nullable=False)
    # Snapshot of the menu item at order time; no FK so menu deletes never touch history.
    menu_item_id: Mapped[int | None] = mapped_column(IdType)
    menu_item_name: Mapped[str] = mapped_column(Text, nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    customizations: Mapped[list[Customization]] = mapped_column(CustomizationList, nullable=False, default=list)
    notes: Mapped[str | None] = mapped_column(Text)

    order: Mapped[Order] = relationship(back_populates='items')


class InventoryItem(Base):
    __tablename__ = 'inventory_items'

    id: Mapped[int] = mapped_column(IdType, primary_key=True)
    sku: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[str | None] = mapped_column(Text)
    unit: Mapped[InventoryUnit] = mapped_column(
        SQLEnum(InventoryUnit, name='inventory_unit'), nullable=False, default=InventoryUnit.PCS, server_default='PCS'
    )
    stock: Mapped[Decimal] = mapped_column(Numeric(14, 3), nullable=False, default=Decimal('0'))
    reorder_threshold: Mapped[Decimal] = mapped_column(Numeric(14, 3), nullable=False, default=Decimal('0'))
    cost_price: Mapped[Decimal | None] = mapped_column(Numeric(12, 2))
    selling_price: Mapped[Decimal | None] = mapped_column(Numeric(12, 2))
    notes: Mapped[str | None] = mapped_column(Text)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class StockAdjustment(Base):
    __tablename__ = 'stock_adjustments'

    id: Mapped[int] = mapped_column(IdType, primary_key=True)
    item_id: Mapped[int] = mapped_column(IdType, ForeignKey('inventory_items.id', ondelete='CASCADE'), nullable=False)
    delta: Mapped[Decimal] = mapped_column(Numeric(14, 3), nullable=False)
    reason: Mapped[StockAdjustmentReason] = mapped_column(
        SQLEnum(StockAdjustmentReason, name='stock_adjustment_reason'), nullable=False
    )
    note: Mapped[str | None] = mapped_column(Text)
    stock_after: Mapped[Decimal] = mapped_column(Numeric(14, 3), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Pc(Base):
    __tablename__ = 'pcs'

    id: Mapped[int] = mapped_column(IdType, primary_key=True)
    pc_number: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    ip_address: Mapped[str | None] = mapped_column(String(45), index=True)
    status: Mapped[PcStatus] = mapped_column(
        SQLEnum(PcStatus, name='pc_status'), nullable=False, default=PcStatus.OFFLINE, server_default='OFFLINE'
    )
    # Plain column; pcs <-> sessions would otherwise be a foreign key cycle.
    current_session_id: Mapped[int | None] = mapped_column(IdType, unique=True)
    session_started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    last_seen: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class TerminalSession(Base):
    __tablename__ = 'sessions'

    id: Mapped[int] = mapped_column(IdType, primary_key=True)
    pc_id: Mapped[int] = mapped_column(IdType, ForeignKey('pcs.id', ondelete='CASCADE'), nullable=False, index=True)
    ip_address: Mapped[str] = mapped_column(String(45), nullable=False)
    status: Mapped[TerminalSessionStatus] = mapped_column(
        SQLEnum(TerminalSessionStatus, name='terminal_session_status'),
        nullable=False,
        default=TerminalSessionStatus.PENDING,
        server_default='PENDING',
    )
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    ended_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class DetectedIp(Base):
    __tablename__ = 'detected_ips'

    id: Mapped[int] = mapped_column(IdType, primary_key=True)
    ip_address: Mapped[str] = mapped_column(String(45), nullable=False, index=True)
    status: Mapped[DetectedIpStatus] = mapped_column(
        SQLEnum(DetectedIpStatus, name='detected_ip_status'),
        nullable=False,
        default=DetectedIpStatus.PENDING,
        server_default='PENDING',
    )
    assigned_pc_id: Mapped[int | None] = mapped_column(IdType, ForeignKey('pcs.id', ondelete='SET NULL'))
    detected_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    registered_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))


class LoginAttempt(Base):
    __tablename__ = 'login_attempts'

    id: Mapped[int] = mapped_column(IdType, primary_key=True)
    email: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False)
    attempt_type: Mapped[LoginAttemptType] = mapped_column(
        SQLEnum(LoginAttemptType, name='login_attempt_type'), nullable=False
    )
    error_message: Mapped[str | None] = mapped_column(Text)
    ip: Mapped[str | None] = mapped_column(String(45))
    user_agent: Mapped[str | None] = mapped_column(Text)
    attempted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class CustomerFeedback(Base):
    __tablename__ = 'customer_feedbacks'
    __table_args__ = (
        CheckConstraint('rating >= 1 AND rating <= 5', name='customer_feedbacks_rating_ck'),
    )

    id: Mapped[int] = mapped_column(IdType, primary_key=True)
    customer_name: Mapped[str] = mapped_column(Text, nullable=False)
    pc_number: Mapped[str] = mapped_column(Text, nullable=False)
    feedback_message: Mapped[str] = mapped_column(Text, nullable=False)
    rating: Mapped[int] = mapped_column(Integer, nullable=False, default=5, server_default='5')
    status: Mapped[FeedbackStatus] = mapped_column(
        SQLEnum(FeedbackStatus, name='feedback_status'), nullable=False, default=FeedbackStatus.NEW, server_default='NEW'
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
