"""
SQLAlchemy Database Models

Orders, their line snapshots, gateway payment sessions, push notification
tokens and notification records, plus the read-only catalog tables the
ordering core validates against.

Status columns are stored as plain strings (native_enum=False) so that new
states never need a schema migration; the Python enums below are the closed
set the services work with.
"""

import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    text,
)
from sqlalchemy.orm import relationship, validates

from foodhub.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _enum_values(enum_cls) -> list[str]:
    return [member.value for member in enum_cls]


def TextEnum(enum_cls) -> Enum:
    """Enum column persisted as VARCHAR holding the member value."""
    return Enum(
        enum_cls,
        native_enum=False,
        create_constraint=False,
        length=32,
        values_callable=_enum_values,
        validate_strings=True,
    )


class OrderStatus(str, enum.Enum):
    """Order status workflow. Valid moves live in services.orders.lifecycle."""
    PAYMENT_PENDING = "payment_pending"
    PAID = "paid"
    PREPARING = "preparing"
    READY = "ready"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (OrderStatus.COMPLETED, OrderStatus.CANCELLED)


class OrderAction(str, enum.Enum):
    """Events that drive the order state machine."""
    PAYMENT_SUCCEEDED = "payment_succeeded"
    PAYMENT_FAILED = "payment_failed"
    ACCEPT = "accept"
    MARK_READY = "mark_ready"
    COMPLETE = "complete"
    CANCEL = "cancel"


class PaymentStatus(str, enum.Enum):
    """Local status of a gateway payment session."""
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not PaymentStatus.PENDING


class IncidentKind(str, enum.Enum):
    """Kinds of payment consistency problems kept for manual review."""
    GATEWAY_REF_MISMATCH = "gateway_ref_mismatch"
    CONFLICTING_TERMINAL_STATUS = "conflicting_terminal_status"
    ORPHANED_PAYMENT = "orphaned_payment"


# =============================================================================
# CATALOG / ACCOUNTS (read-only for the ordering core)
# =============================================================================

class User(Base):
    __tablename__ = "users"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    username = Column(String(100), nullable=False, unique=True)
    display_name = Column(String(100), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    def __repr__(self):
        return f"<User {self.username}>"


class Restaurant(Base):
    """A restaurant and the operator account that receives its pushes."""
    __tablename__ = "restaurants"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String(100), nullable=False, unique=True)
    owner_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    def __repr__(self):
        return f"<Restaurant {self.name}>"


class MenuItem(Base):
    __tablename__ = "menu_items"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    restaurant_id = Column(Uuid, ForeignKey("restaurants.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)
    price = Column(Integer, nullable=False)  # minor currency units
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), onupdate=utcnow, nullable=True)


# =============================================================================
# ORDERS
# =============================================================================

class Order(Base):
    """
    A customer order.

    `total` is fixed at creation to the sum of its line subtotals and can
    never be changed afterwards. `status` is written only by the
    OrderLifecycleManager.
    """
    __tablename__ = "orders"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    restaurant_id = Column(Uuid, ForeignKey("restaurants.id", ondelete="CASCADE"), nullable=False, index=True)
    customer_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    total = Column(Integer, nullable=False)
    status = Column(TextEnum(OrderStatus), nullable=False, index=True)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), onupdate=utcnow, nullable=True)

    lines = relationship(
        "OrderLine",
        back_populates="order",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="OrderLine.position",
    )

    @validates("total")
    def _freeze_total(self, key, value):
        if self.total is not None and value != self.total:
            raise ValueError(f"Order total is immutable (was {self.total}, got {value})")
        return value

    def __repr__(self):
        return f"<Order {self.id} - {self.total} - {self.status.value}>"


class OrderLine(Base):
    """Snapshot of a menu item as it was when the order was placed."""
    __tablename__ = "order_lines"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(Uuid, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    position = Column(Integer, nullable=False, default=0)
    item_name = Column(String(100), nullable=False)
    item_price = Column(Integer, nullable=False)
    quantity = Column(Integer, nullable=False)

    order = relationship("Order", back_populates="lines")

    @property
    def subtotal(self) -> int:
        return self.item_price * self.quantity


class OrderStatusChange(Base):
    """Append-only history, one row per successful status transition."""
    __tablename__ = "order_status_changes"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(Uuid, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    from_status = Column(TextEnum(OrderStatus), nullable=False)
    to_status = Column(TextEnum(OrderStatus), nullable=False)
    action = Column(TextEnum(OrderAction), nullable=False)
    actor = Column(String(100), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


# =============================================================================
# PAYMENTS
# =============================================================================

class PaymentSession(Base):
    """
    One attempt to collect payment for an order, identified by the
    gateway-issued session token.

    At most one session per order may be pending; the partial unique index
    backs up the locked check in PaymentSessionCoordinator.open_session.
    """
    __tablename__ = "payment_sessions"
    __table_args__ = (
        Index(
            "uq_payment_sessions_one_pending_per_order",
            "order_id",
            unique=True,
            postgresql_where=text("status = 'pending'"),
            sqlite_where=text("status = 'pending'"),
        ),
    )

    session_id = Column(String(255), primary_key=True)
    order_id = Column(Uuid, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    status = Column(TextEnum(PaymentStatus), nullable=False, default=PaymentStatus.PENDING)
    gateway_order_ref = Column(String(255), nullable=False, index=True)
    amount = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), onupdate=utcnow, nullable=True)

    def __repr__(self):
        return f"<PaymentSession {self.session_id} - order {self.order_id} - {self.status.value}>"


class PaymentIncident(Base):
    """A reconciliation problem recorded for operators; never auto-resolved."""
    __tablename__ = "payment_incidents"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    kind = Column(TextEnum(IncidentKind), nullable=False, index=True)
    session_id = Column(String(255), nullable=True, index=True)
    order_id = Column(Uuid, ForeignKey("orders.id", ondelete="CASCADE"), nullable=True, index=True)
    recorded_status = Column(String(32), nullable=True)
    reported_status = Column(String(32), nullable=True)
    reported_gateway_ref = Column(String(255), nullable=True)
    detail = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


# =============================================================================
# NOTIFICATIONS
# =============================================================================

class NotificationToken(Base):
    """
    A device push token. One row per (user, device); registering the same
    device again replaces its token.
    """
    __tablename__ = "notification_tokens"
    __table_args__ = (
        UniqueConstraint("user_id", "device_id", name="uq_notification_tokens_user_device"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    device_id = Column(String(255), nullable=False)
    token = Column(String(255), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), onupdate=utcnow, nullable=True)


class Notification(Base):
    """
    Durable record of a notification intent.

    recipient_id NULL means broadcast to every user, sender_id NULL means
    system-originated. Immutable once written.
    """
    __tablename__ = "notifications"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    recipient_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=True, index=True)
    sender_id = Column(Uuid, ForeignKey("restaurants.id", ondelete="CASCADE"), nullable=True, index=True)
    order_id = Column(Uuid, ForeignKey("orders.id", ondelete="CASCADE"), nullable=True, index=True)
    ttl_minutes = Column(Integer, nullable=False)
    title = Column(String(200), nullable=False)
    body = Column(Text, nullable=False)
    dedupe_key = Column(String(255), nullable=True, unique=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    def __repr__(self):
        target = self.recipient_id or "broadcast"
        return f"<Notification {self.id} -> {target}: {self.title}>"
