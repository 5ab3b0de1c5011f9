from __future__ import annotations

from dataclasses import asdict
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field

from queuepoint.models import (
    CustomerFeedback,
    InventoryItem,
    LoginAttempt,
    MenuItem,
    Order,
    Principal,
    StockAdjustment,
)
from queuepoint.services.inventory_service import get_status
from queuepoint.services.menu_service import is_orderable, menu_options
from queuepoint.services.queue_view_service import Board, OrderCard, order_card


class LoginIn(BaseModel):
    email: str
    password: str


class OrderLineIn(BaseModel):
    menu_item_id: int
    quantity: int = 1
    customizations: list[str] = Field(default_factory=list)
    notes: str | None = None


class OrderCreateIn(BaseModel):
    items: list[OrderLineIn]
    customer_name: str | None = None
    terminal: str | None = None


class StatusIn(BaseModel):
    status: str


class InventoryItemIn(BaseModel):
    sku: str
    name: str
    category: str | None = None
    unit: str = 'pcs'
    stock: Decimal = Decimal('0')
    reorder_threshold: Decimal = Decimal('0')
    cost_price: Decimal | None = None
    selling_price: Decimal | None = None
    notes: str | None = None


class InventoryItemPatch(BaseModel):
    sku: str | None = None
    name: str | None = None
    category: str | None = None
    unit: str | None = None
    stock: Decimal | None = None
    reorder_threshold: Decimal | None = None
    cost_price: Decimal | None = None
    selling_price: Decimal | None = None
    notes: str | None = None


class StockAdjustIn(BaseModel):
    amount: Decimal
    reason: str
    note: str | None = None


class PcCreateIn(BaseModel):
    pc_number: str


class AccessRequestIn(BaseModel):
    pc_number: str
    # Falls back to the IP-echo lookup, then the connecting address.
    ip: str | None = None


class SessionActionIn(BaseModel):
    session_id: int


class AssignIpIn(BaseModel):
    pc_id: int


class MenuItemIn(BaseModel):
    name: str
    price: Decimal
    category: str
    description: str = ''
    available: bool = True
    customization_options: list[dict] = Field(default_factory=list)
    # None means the item is not stock-tracked.
    quantity: int | None = None


class MenuItemPatch(BaseModel):
    name: str | None = None
    price: Decimal | None = None
    category: str | None = None
    description: str | None = None
    available: bool | None = None
    customization_options: list[dict] | None = None
    quantity: int | None = None


class AvailabilityIn(BaseModel):
    available: bool


class StaffIn(BaseModel):
    email: str
    password: str
    role: str = 'STAFF'


class StaffPatch(BaseModel):
    email: str | None = None
    password: str | None = None
    role: str | None = None
    active: bool | None = None


class FeedbackIn(BaseModel):
    customer_name: str
    pc_number: str
    message: str
    rating: int = 5


def _money(value: Decimal | None) -> str | None:
    if value is None:
        return None
    return str(Decimal(value).quantize(Decimal('0.01')))


def _quantity(value: Decimal | None) -> str | None:
    if value is None:
        return None
    return format(Decimal(value).normalize(), 'f')


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def menu_item_payload(item: MenuItem) -> dict:
    return {
        'id': item.id,
        'name': item.name,
        'description': item.description,
        'price': _money(item.price),
        'category': item.category,
        'available': is_orderable(item),
        'quantity': item.quantity,
        'customization_options': [
            {'name': option.name, 'price': _money(option.price)}
            for option in menu_options(item).values()
        ],
    }


def admin_menu_item_payload(item: MenuItem) -> dict:
    payload = menu_item_payload(item)
    payload['orderable'] = payload['available']
    payload['available'] = bool(item.available)
    return payload


def principal_payload(principal: Principal) -> dict:
    return {
        'id': principal.id,
        'email': principal.email,
        'role': principal.role.value,
        'active': principal.active,
        'created_at': _iso(principal.created_at),
    }


def order_card_payload(card: OrderCard) -> dict:
    data = asdict(card)
    data['total'] = _money(card.total)
    data['created_at'] = _iso(card.created_at)
    data['completed_at'] = _iso(card.completed_at)
    for line in data['lines']:
        line['unit_price'] = _money(line['unit_price'])
        line['display_price'] = _money(line['display_price'])
        line['customization_prices'] = [_money(price) for price in line['customization_prices']]
    return data


def order_payload(order: Order) -> dict:
    return order_card_payload(order_card(order))


def board_payload(board: Board) -> dict:
    return {
        'pending': [order_card_payload(card) for card in board.pending],
        'preparing': [order_card_payload(card) for card in board.preparing],
        'ready': [order_card_payload(card) for card in board.ready],
        'active_count': board.active_count,
        'refresh_after_seconds': board.refresh_after_seconds,
    }


def inventory_item_payload(item: InventoryItem) -> dict:
    return {
        'id': item.id,
        'sku': item.sku,
        'name': item.name,
        'category': item.category,
        'unit': item.unit.value,
        'stock': _quantity(item.stock),
        'reorder_threshold': _quantity(item.reorder_threshold),
        'cost_price': _money(item.cost_price),
        'selling_price': _money(item.selling_price),
        'notes': item.notes,
        'status': get_status(item),
        'updated_at': _iso(item.updated_at),
    }


def adjustment_payload(adjustment: StockAdjustment) -> dict:
    return {
        'id': adjustment.id,
        'item_id': adjustment.item_id,
        'delta': _quantity(adjustment.delta),
        'reason': adjustment.reason.value,
        'note': adjustment.note,
        'stock_after': _quantity(adjustment.stock_after),
        'created_at': _iso(adjustment.created_at),
    }


def login_attempt_payload(attempt: LoginAttempt) -> dict:
    return {
        'id': attempt.id,
        'email': attempt.email,
        'success': attempt.success,
        'attempt_type': attempt.attempt_type.value,
        'error_message': attempt.error_message,
        'ip': attempt.ip,
        'attempted_at': _iso(attempt.attempted_at),
    }


def feedback_payload(feedback: CustomerFeedback) -> dict:
    return {
        'id': feedback.id,
        'customer_name': feedback.customer_name,
        'pc_number': feedback.pc_number,
        'message': feedback.feedback_message,
        'rating': feedback.rating,
        'status': feedback.status.value,
        'created_at': _iso(feedback.created_at),
    }
