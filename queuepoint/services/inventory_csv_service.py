from __future__ import annotations

import csv
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from io import StringIO

from sqlalchemy.orm import Session

from queuepoint.models import InventoryItem, InventoryUnit, StockAdjustmentReason
from queuepoint.services.gateway import atomic
from queuepoint.services.inventory_service import (
    InventoryItemInput,
    add_item_in_session,
    adjust_stock_in_session,
    get_item_by_sku,
    update_item_in_session,
)

CSV_HEADER = ['SKU', 'Name', 'Category', 'Unit', 'Stock', 'Reorder Threshold', 'Cost Price', 'Selling Price', 'Notes']
CSV_FIELD_COUNT = len(CSV_HEADER)


@dataclass
class ImportSummary:
    created: int = 0
    updated: int = 0
    skipped: int = 0
    skipped_rows: list[int] = field(default_factory=list)

    def skip(self, row_number: int) -> None:
        self.skipped += 1
        self.skipped_rows.append(row_number)


def _format_decimal(value: Decimal | None) -> str:
    if value is None:
        return ''
    return format(Decimal(value).normalize(), 'f')


def export_csv(items: list[InventoryItem]) -> str:
    sio = StringIO()
    writer = csv.writer(sio, quoting=csv.QUOTE_ALL, lineterminator='\n')
    writer.writerow(CSV_HEADER)
    for item in items:
        writer.writerow(
            [
                item.sku,
                item.name,
                item.category or '',
                item.unit.value,
                _format_decimal(item.stock),
                _format_decimal(item.reorder_threshold),
                _format_decimal(item.cost_price),
                _format_decimal(item.selling_price),
                item.notes or '',
            ]
        )
    return sio.getvalue()


def parse_number(raw: str) -> Decimal:
    try:
        value = Decimal(raw.strip())
    except (InvalidOperation, ValueError):
        return Decimal('0')
    if not value.is_finite():
        return Decimal('0')
    return value


def parse_optional_number(raw: str) -> Decimal | None:
    if not raw.strip():
        return None
    return parse_number(raw)


def parse_row(values: list[str]) -> InventoryItemInput | None:
    if len(values) < CSV_FIELD_COUNT:
        return None
    values = [value.strip() for value in values]
    if not values[0] or not values[1]:
        return None
    try:
        unit = InventoryUnit(values[3].lower())
    except ValueError:
        unit = InventoryUnit.PCS
    return InventoryItemInput(
        sku=values[0],
        name=values[1],
        category=values[2] or None,
        unit=unit,
        stock=parse_number(values[4]),
        reorder_threshold=max(parse_number(values[5]), Decimal('0')),
        cost_price=parse_optional_number(values[6]),
        selling_price=parse_optional_number(values[7]),
        notes=values[8] or None,
    )


def _apply_row(db: Session, data: InventoryItemInput) -> bool:
    """Returns True when a new item was created."""
    existing = get_item_by_sku(db, data.sku)
    if existing is None:
        add_item_in_session(db, data)
        return True

    update_item_in_session(
        db,
        existing,
        {
            'name': data.name,
            'category': data.category,
            'unit': data.unit,
            'reorder_threshold': data.reorder_threshold,
            'cost_price': data.cost_price,
            'selling_price': data.selling_price,
            'notes': data.notes,
        },
    )
    delta = data.stock - Decimal(existing.stock or 0)
    if delta != 0:
        adjust_stock_in_session(
            db, existing, delta=delta, reason=StockAdjustmentReason.ADJUSTMENT, note='CSV import count'
        )
    return False


def import_csv(db: Session, *, csv_text: str) -> ImportSummary:
    summary = ImportSummary()
    reader = csv.reader(StringIO(csv_text.lstrip('\ufeff')))
    with atomic(db, operation='import_inventory_csv'):
        for row_number, values in enumerate(reader, start=1):
            if row_number == 1:
                continue
            if not any(value.strip() for value in values):
                continue
            data = parse_row(values)
            if data is None:
                summary.skip(row_number)
                continue
            if _apply_row(db, data):
                summary.created += 1
            else:
                summary.updated += 1
            db.flush()
    return summary
