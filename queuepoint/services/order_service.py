from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from queuepoint.config import settings
from queuepoint.errors import InvalidInput, InvalidTransition, NotFound
from queuepoint.models import Order, OrderCounter, OrderItem, OrderStatus
from queuepoint.services.customizations import line_total
from queuepoint.services.gateway import atomic
from queuepoint.services.menu_service import get_menu_item, is_orderable, reserve_quantity, resolve_customizations

ORDER_COUNTER_ID = 1
CENT = Decimal('0.01')

ALLOWED_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.PREPARING}),
    OrderStatus.PREPARING: frozenset({OrderStatus.READY}),
    # Ready -> Preparing is the kitchen correction path.
    OrderStatus.READY: frozenset({OrderStatus.COMPLETED, OrderStatus.PREPARING}),
    OrderStatus.COMPLETED: frozenset(),
}


@dataclass(frozen=True)
class OrderLineInput:
    menu_item_id: int
    quantity: int
    customizations: list[str] = field(default_factory=list)
    notes: str | None = None


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _money(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def can_transition(current: OrderStatus, new: OrderStatus) -> bool:
    return new in ALLOWED_TRANSITIONS.get(current, frozenset())


def parse_status(value: str | OrderStatus) -> OrderStatus:
    if isinstance(value, OrderStatus):
        return value
    try:
        return OrderStatus(str(value).strip().lower())
    except ValueError as exc:
        raise InvalidInput(f'Unknown order status: {value}') from exc


def _reserve_order_number(db: Session) -> int:
    # The counter row is locked until commit, so concurrent creators queue here
    # instead of reading the same maximum.
    counter = db.execute(
        select(OrderCounter).where(OrderCounter.id == ORDER_COUNTER_ID).with_for_update()
    ).scalar_one_or_none()
    if counter is None:
        current_max = db.execute(select(func.max(Order.order_number))).scalar_one_or_none() or 0
        counter = OrderCounter(id=ORDER_COUNTER_ID, last_number=current_max)
        db.add(counter)
    counter.last_number += 1
    db.flush()
    return counter.last_number


def _validate_lines(lines: list[OrderLineInput]) -> None:
    if not lines:
        raise InvalidInput('An order needs at least one item')
    for line in lines:
        if line.quantity is None or line.quantity <= 0:
            raise InvalidInput('Item quantity must be greater than zero')


def create_order(
    db: Session,
    *,
    lines: list[OrderLineInput],
    customer_name: str | None = None,
    terminal: str | None = None,
    now: datetime | None = None,
) -> Order:
    _validate_lines(lines)
    terminal = (terminal or '').strip() or settings.default_terminal
    customer_name = (customer_name or '').strip() or None

    with atomic(db, operation='create_order'):
        total = Decimal('0')
        order_items: list[OrderItem] = []
        for line in lines:
            menu_item = get_menu_item(db, line.menu_item_id, lock=True)
            if not is_orderable(menu_item):
                raise InvalidInput(f'{menu_item.name} is not available')
            customizations = resolve_customizations(menu_item, line.customizations)
            reserve_quantity(menu_item, line.quantity)
            unit_price = Decimal(menu_item.price)
            order_items.append(
                OrderItem(
                    menu_item_id=menu_item.id,
                    menu_item_name=menu_item.name,
                    price=unit_price,
                    quantity=line.quantity,
                    customizations=customizations,
                    notes=(line.notes or '').strip() or None,
                )
            )
            total += line_total(unit_price, line.quantity, customizations)

        order = Order(
            order_number=_reserve_order_number(db),
            terminal=terminal,
            customer_name=customer_name,
            total=_money(total),
            status=OrderStatus.PENDING,
            created_at=now or _now(),
            items=order_items,
        )
        db.add(order)
        db.flush()
    return order


def get_order(db: Session, order_id: int) -> Order:
    order = db.execute(select(Order).where(Order.id == order_id)).scalar_one_or_none()
    if not order:
        raise NotFound(f'Order {order_id} not found')
    return order


def update_status(
    db: Session,
    *,
    order_id: int,
    new_status: str | OrderStatus,
    now: datetime | None = None,
) -> Order:
    target = parse_status(new_status)
    with atomic(db, operation='update_order_status'):
        order = get_order(db, order_id)
        current = order.status
        if not can_transition(current, target):
            raise InvalidTransition(
                f'Order #{order.order_number} cannot move from {current.value} to {target.value}'
            )
        values: dict = {'status': target}
        if target == OrderStatus.COMPLETED:
            values['completed_at'] = now or _now()
        result = db.execute(
            update(Order)
            .where(Order.id == order_id, Order.status == current)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise InvalidTransition(f'Order #{order.order_number} changed while updating; reload and retry')
    db.refresh(order)
    return order


def delete_order(db: Session, *, order_id: int) -> int:
    with atomic(db, operation='delete_order'):
        order = get_order(db, order_id)
        order_number = order.order_number
        db.delete(order)
    return order_number


def list_orders(
    db: Session,
    *,
    status: str | OrderStatus | None = None,
    terminal: str | None = None,
    limit: int | None = 200,
) -> list[Order]:
    stmt = select(Order).order_by(Order.created_at.desc(), Order.order_number.desc())
    if status is not None:
        stmt = stmt.where(Order.status == parse_status(status))
    if terminal:
        stmt = stmt.where(Order.terminal == terminal)
    if limit:
        stmt = stmt.limit(limit)
    return list(db.execute(stmt).scalars().all())


def pending_queue(db: Session) -> list[Order]:
    """Every order not yet completed, oldest first. Queue position drives the wait estimate."""
    return list(
        db.execute(
            select(Order)
            .where(Order.status != OrderStatus.COMPLETED)
            .order_by(Order.created_at.asc(), Order.order_number.asc())
        ).scalars().all()
    )
