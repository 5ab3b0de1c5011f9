from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal

from queuepoint.config import settings
from queuepoint.models import Order, OrderItem, OrderStatus
from queuepoint.services.customizations import line_total

CENT = Decimal('0.01')


@dataclass(frozen=True)
class LineCard:
    name: str
    quantity: int
    unit_price: Decimal
    customizations: list[str]
    customization_prices: list[Decimal]
    notes: str | None
    display_price: Decimal


@dataclass(frozen=True)
class OrderCard:
    id: int
    order_number: int
    status: str
    customer_name: str | None
    terminal: str
    total: Decimal
    created_at: datetime
    completed_at: datetime | None
    lines: list[LineCard]
    estimated_wait_minutes: int | None = None


@dataclass
class Board:
    pending: list[OrderCard] = field(default_factory=list)
    preparing: list[OrderCard] = field(default_factory=list)
    ready: list[OrderCard] = field(default_factory=list)
    refresh_after_seconds: int = 5

    @property
    def active_count(self) -> int:
        return len(self.pending) + len(self.preparing) + len(self.ready)


def estimated_wait_minutes(
    queue_index: int,
    *,
    base_minutes: int | None = None,
    per_order_minutes: int | None = None,
) -> int:
    base = settings.queue_base_wait_minutes if base_minutes is None else base_minutes
    per_order = settings.queue_per_order_minutes if per_order_minutes is None else per_order_minutes
    return base + queue_index * per_order


def line_card(item: OrderItem) -> LineCard:
    customizations = list(item.customizations or [])
    unit_price = Decimal(item.price)
    return LineCard(
        name=item.menu_item_name,
        quantity=item.quantity,
        unit_price=unit_price,
        customizations=[c.label for c in customizations],
        customization_prices=[c.price for c in customizations],
        notes=item.notes,
        display_price=line_total(unit_price, item.quantity, customizations).quantize(CENT, rounding=ROUND_HALF_UP),
    )


def order_card(order: Order, *, estimated_wait: int | None = None) -> OrderCard:
    return OrderCard(
        id=order.id,
        order_number=order.order_number,
        status=order.status.value,
        customer_name=order.customer_name,
        terminal=order.terminal,
        total=Decimal(order.total),
        created_at=order.created_at,
        completed_at=order.completed_at,
        lines=[line_card(item) for item in order.items],
        estimated_wait_minutes=estimated_wait,
    )


def build_board(orders: list[Order], *, refresh_after_seconds: int | None = None) -> Board:
    """Split active orders into kitchen columns.

    Queue position is taken over all non-completed orders sorted by creation time,
    the same ordering the customer queue screen shows.
    """
    active = sorted(
        (order for order in orders if order.status != OrderStatus.COMPLETED),
        key=lambda order: (order.created_at, order.order_number),
    )
    board = Board(
        refresh_after_seconds=(
            settings.order_poll_interval_seconds if refresh_after_seconds is None else refresh_after_seconds
        )
    )
    for index, order in enumerate(active):
        card = order_card(order, estimated_wait=estimated_wait_minutes(index))
        if order.status == OrderStatus.PENDING:
            board.pending.append(card)
        elif order.status == OrderStatus.PREPARING:
            board.preparing.append(card)
        elif order.status == OrderStatus.READY:
            board.ready.append(card)
    return board
