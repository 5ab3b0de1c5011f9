from __future__ import annotations

from decimal import Decimal, InvalidOperation

from sqlalchemy import select
from sqlalchemy.orm import Session

from queuepoint.errors import InvalidInput, NotFound
from queuepoint.models import MenuItem
from queuepoint.services.customizations import Customization, NamedOption, RawLabel, decode_customization
from queuepoint.services.gateway import atomic

EDITABLE_FIELDS = ('name', 'description', 'price', 'category', 'available', 'customization_options', 'quantity')


def is_orderable(item: MenuItem) -> bool:
    if item.quantity is not None and item.quantity <= 0:
        return False
    return bool(item.available)


def list_menu(db: Session, *, category: str | None = None, include_unavailable: bool = False) -> list[MenuItem]:
    stmt = select(MenuItem).order_by(MenuItem.category.asc(), MenuItem.name.asc())
    if category:
        stmt = stmt.where(MenuItem.category == category)
    items = db.execute(stmt).scalars().all()
    if include_unavailable:
        return list(items)
    return [item for item in items if is_orderable(item)]


def get_menu_item(db: Session, menu_item_id: int, *, lock: bool = False) -> MenuItem:
    stmt = select(MenuItem).where(MenuItem.id == menu_item_id)
    if lock:
        stmt = stmt.with_for_update()
    item = db.execute(stmt).scalar_one_or_none()
    if not item:
        raise NotFound(f'Menu item {menu_item_id} not found')
    return item


def menu_options(item: MenuItem) -> dict[str, NamedOption]:
    options: dict[str, NamedOption] = {}
    for raw in item.customization_options or []:
        option = decode_customization(raw)
        if isinstance(option, NamedOption):
            options[option.name] = option
    return options


def resolve_customizations(item: MenuItem, names: list[str]) -> list[Customization]:
    """Price customization names against the item's options; unknown names stay free labels."""
    options = menu_options(item)
    resolved: list[Customization] = []
    for name in names:
        label = (name or '').strip()
        if not label:
            continue
        resolved.append(options.get(label, RawLabel(label)))
    return resolved


def reserve_quantity(item: MenuItem, quantity: int) -> None:
    if item.quantity is None:
        return
    if item.quantity < quantity:
        raise InvalidInput(f'Only {max(item.quantity, 0)} left of {item.name}')
    item.quantity = max(0, item.quantity - quantity)


def _clean_name(value) -> str:
    name = (value or '').strip()
    if not name:
        raise InvalidInput('Menu item name is required')
    return name


def _clean_price(value, *, label: str = 'Menu item price') -> Decimal:
    try:
        price = Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise InvalidInput(f'{label} is not a number: {value}') from exc
    if not price.is_finite() or price < 0:
        raise InvalidInput(f'{label} cannot be negative')
    return price.quantize(Decimal('0.01'))


def _clean_quantity(value) -> int | None:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise InvalidInput('Quantity must be a whole number of zero or more')
    return int(value)


def clean_customization_options(options: list | None) -> list[dict]:
    """Options are stored as {'name', 'price'} dicts with unique names and two-place prices."""
    cleaned: list[dict] = []
    seen: set[str] = set()
    for raw in options or []:
        option = decode_customization(raw)
        if not isinstance(option, NamedOption):
            raise InvalidInput(f'Customization option needs a name and a price: {raw}')
        name = option.name.strip()
        if name in seen:
            raise InvalidInput(f'Duplicate customization option: {name}')
        seen.add(name)
        raw_price = raw.get('price', 0) if isinstance(raw, dict) else option.price
        price = _clean_price(raw_price, label=f'Price of {name}')
        cleaned.append({'name': name, 'price': str(price)})
    return cleaned


def create_menu_item(
    db: Session,
    *,
    name: str,
    price: Decimal,
    category: str,
    description: str = '',
    available: bool = True,
    customization_options: list[dict] | None = None,
    quantity: int | None = None,
) -> MenuItem:
    item = MenuItem(
        name=_clean_name(name),
        description=description or '',
        price=_clean_price(price),
        category=(category or '').strip(),
        available=bool(available),
        customization_options=clean_customization_options(customization_options),
        quantity=_clean_quantity(quantity),
    )
    db.add(item)
    db.flush()
    return item


def add_menu_item(db: Session, **fields) -> MenuItem:
    with atomic(db, operation='add_menu_item'):
        item = create_menu_item(db, **fields)
    return item


def update_menu_item(db: Session, menu_item_id: int, changes: dict) -> MenuItem:
    """Apply a partial edit. Placed orders keep the prices they were taken at."""
    unknown = set(changes) - set(EDITABLE_FIELDS)
    if unknown:
        raise InvalidInput(f'Unknown menu fields: {", ".join(sorted(unknown))}')
    cleaners = {
        'name': _clean_name,
        'description': lambda value: value or '',
        'price': _clean_price,
        'category': lambda value: (value or '').strip(),
        'available': bool,
        'customization_options': clean_customization_options,
        'quantity': _clean_quantity,
    }
    cleaned = {key: cleaners[key](value) for key, value in changes.items()}
    with atomic(db, operation='update_menu_item'):
        item = get_menu_item(db, menu_item_id, lock=True)
        for key, value in cleaned.items():
            setattr(item, key, value)
    return item


def set_menu_availability(db: Session, menu_item_id: int, available: bool) -> MenuItem:
    return update_menu_item(db, menu_item_id, {'available': available})


def delete_menu_item(db: Session, menu_item_id: int) -> str:
    # Order lines snapshot the name and price, so history survives the delete.
    with atomic(db, operation='delete_menu_item'):
        item = get_menu_item(db, menu_item_id)
        name = item.name
        db.delete(item)
    return name
