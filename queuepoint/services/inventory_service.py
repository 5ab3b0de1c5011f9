from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from queuepoint.errors import InvalidAmount, InvalidInput, NotFound
from queuepoint.models import InventoryItem, InventoryUnit, StockAdjustment, StockAdjustmentReason
from queuepoint.services.gateway import atomic

STATUS_IN_STOCK = 'in-stock'
STATUS_LOW = 'low'
STATUS_OUT = 'out'
INVENTORY_STATUSES = (STATUS_IN_STOCK, STATUS_LOW, STATUS_OUT)

EDITABLE_FIELDS = ('sku', 'name', 'category', 'unit', 'reorder_threshold', 'cost_price', 'selling_price', 'notes')


@dataclass
class InventoryItemInput:
    sku: str
    name: str
    category: str | None = None
    unit: InventoryUnit = InventoryUnit.PCS
    stock: Decimal = Decimal('0')
    reorder_threshold: Decimal = Decimal('0')
    cost_price: Decimal | None = None
    selling_price: Decimal | None = None
    notes: str | None = None


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def get_status(item: InventoryItem) -> str:
    stock = Decimal(item.stock or 0)
    if stock <= 0:
        return STATUS_OUT
    if stock <= Decimal(item.reorder_threshold or 0):
        return STATUS_LOW
    return STATUS_IN_STOCK


def parse_reason(value: str | StockAdjustmentReason) -> StockAdjustmentReason:
    if isinstance(value, StockAdjustmentReason):
        return value
    try:
        return StockAdjustmentReason(str(value).strip().lower())
    except ValueError as exc:
        raise InvalidInput(f'Unknown adjustment reason: {value}') from exc


def parse_unit(value: str | InventoryUnit) -> InventoryUnit:
    if isinstance(value, InventoryUnit):
        return value
    try:
        return InventoryUnit(str(value).strip().lower())
    except ValueError as exc:
        raise InvalidInput(f'Unknown unit: {value}') from exc


def signed_delta(reason: str | StockAdjustmentReason, amount: Decimal) -> Decimal:
    """Turn an entered amount into a ledger delta: receiving adds, everything else removes."""
    reason = parse_reason(reason)
    try:
        amount = Decimal(amount)
    except (InvalidOperation, TypeError, ValueError) as exc:
        raise InvalidAmount(f'Invalid amount: {amount}') from exc
    if not amount.is_finite() or amount <= 0:
        raise InvalidAmount('Amount must be greater than zero')
    if reason == StockAdjustmentReason.RECEIVE:
        return amount
    return -amount


def _validate_input(data: InventoryItemInput) -> None:
    if not (data.sku or '').strip():
        raise InvalidInput('SKU is required')
    if not (data.name or '').strip():
        raise InvalidInput('Name is required')
    if Decimal(data.reorder_threshold) < 0:
        raise InvalidInput('Reorder threshold cannot be negative')


def get_item(db: Session, item_id: int, *, lock: bool = False) -> InventoryItem:
    stmt = select(InventoryItem).where(InventoryItem.id == item_id)
    if lock:
        stmt = stmt.with_for_update()
    item = db.execute(stmt).scalar_one_or_none()
    if not item:
        raise NotFound(f'Inventory item {item_id} not found')
    return item


def get_item_by_sku(db: Session, sku: str) -> InventoryItem | None:
    return db.execute(select(InventoryItem).where(InventoryItem.sku == sku.strip())).scalar_one_or_none()


def _ensure_sku_free(db: Session, sku: str, *, item_id: int | None = None) -> None:
    existing = get_item_by_sku(db, sku)
    if existing and existing.id != item_id:
        raise InvalidInput(f'SKU {sku} is already in use')


def _record_adjustment(
    db: Session,
    item: InventoryItem,
    *,
    delta: Decimal,
    reason: StockAdjustmentReason,
    note: str | None,
) -> StockAdjustment:
    item.stock = Decimal(item.stock or 0) + delta
    item.updated_at = _now()
    adjustment = StockAdjustment(
        item_id=item.id,
        delta=delta,
        reason=reason,
        note=(note or '').strip() or None,
        stock_after=item.stock,
    )
    db.add(adjustment)
    return adjustment


def add_item_in_session(db: Session, data: InventoryItemInput) -> InventoryItem:
    _validate_input(data)
    _ensure_sku_free(db, data.sku)
    item = InventoryItem(
        sku=data.sku.strip(),
        name=data.name.strip(),
        category=(data.category or '').strip() or None,
        unit=data.unit,
        stock=Decimal('0'),
        reorder_threshold=Decimal(data.reorder_threshold),
        cost_price=data.cost_price,
        selling_price=data.selling_price,
        notes=data.notes,
        updated_at=_now(),
    )
    db.add(item)
    db.flush()
    opening = Decimal(data.stock or 0)
    if opening != 0:
        _record_adjustment(db, item, delta=opening, reason=StockAdjustmentReason.RECEIVE, note='Opening balance')
    return item


def add_item(db: Session, data: InventoryItemInput) -> int:
    with atomic(db, operation='add_inventory_item'):
        item = add_item_in_session(db, data)
    return item.id


def update_item_in_session(db: Session, item: InventoryItem, changes: dict) -> InventoryItem:
    if 'stock' in changes:
        raise InvalidInput('Stock changes go through stock adjustments')
    unknown = set(changes) - set(EDITABLE_FIELDS)
    if unknown:
        raise InvalidInput(f'Unknown inventory fields: {", ".join(sorted(unknown))}')
    if 'sku' in changes:
        sku = (changes['sku'] or '').strip()
        if not sku:
            raise InvalidInput('SKU is required')
        _ensure_sku_free(db, sku, item_id=item.id)
        changes['sku'] = sku
    if 'unit' in changes:
        changes['unit'] = parse_unit(changes['unit'])
    if 'name' in changes and not (changes['name'] or '').strip():
        raise InvalidInput('Name is required')
    if 'reorder_threshold' in changes and Decimal(changes['reorder_threshold']) < 0:
        raise InvalidInput('Reorder threshold cannot be negative')
    for key, value in changes.items():
        setattr(item, key, value)
    item.updated_at = _now()
    return item


def update_item(db: Session, item_id: int, changes: dict) -> None:
    with atomic(db, operation='update_inventory_item'):
        item = get_item(db, item_id)
        update_item_in_session(db, item, dict(changes))


def delete_item(db: Session, item_id: int) -> None:
    with atomic(db, operation='delete_inventory_item'):
        item = get_item(db, item_id)
        db.delete(item)


def adjust_stock_in_session(
    db: Session,
    item: InventoryItem,
    *,
    delta: Decimal,
    reason: str | StockAdjustmentReason,
    note: str | None = None,
) -> StockAdjustment:
    reason = parse_reason(reason)
    try:
        delta = Decimal(delta)
    except (InvalidOperation, TypeError, ValueError) as exc:
        raise InvalidAmount(f'Invalid amount: {delta}') from exc
    if not delta.is_finite() or delta == 0:
        raise InvalidAmount('Adjustment amount must be greater than zero')
    # No clamping: negative stock shows as out until someone reconciles the count.
    return _record_adjustment(db, item, delta=delta, reason=reason, note=note)


def adjust_stock(
    db: Session,
    item_id: int,
    *,
    delta: Decimal,
    reason: str | StockAdjustmentReason,
    note: str | None = None,
) -> InventoryItem:
    with atomic(db, operation='adjust_stock'):
        item = get_item(db, item_id, lock=True)
        adjust_stock_in_session(db, item, delta=delta, reason=reason, note=note)
    return item


def list_items(
    db: Session,
    *,
    query: str | None = None,
    category: str | None = None,
    status: str | None = None,
) -> list[InventoryItem]:
    stmt = select(InventoryItem).order_by(InventoryItem.name.asc())
    if query:
        like = f'%{query.strip()}%'
        stmt = stmt.where(or_(InventoryItem.name.ilike(like), InventoryItem.sku.ilike(like)))
    if category:
        stmt = stmt.where(InventoryItem.category == category)
    items = list(db.execute(stmt).scalars().all())
    if status:
        if status not in INVENTORY_STATUSES:
            raise InvalidInput(f'Unknown inventory status: {status}')
        items = [item for item in items if get_status(item) == status]
    return items


def low_stock_items(db: Session) -> list[InventoryItem]:
    return [item for item in list_items(db) if get_status(item) != STATUS_IN_STOCK]


def list_adjustments(db: Session, *, item_id: int | None = None, limit: int = 500) -> list[StockAdjustment]:
    stmt = select(StockAdjustment).order_by(StockAdjustment.id.desc()).limit(limit)
    if item_id is not None:
        stmt = stmt.where(StockAdjustment.item_id == item_id)
    return list(db.execute(stmt).scalars().all())
