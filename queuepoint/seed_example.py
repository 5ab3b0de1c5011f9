from decimal import Decimal

from sqlalchemy import func, select

from queuepoint.db import SessionLocal, engine
from queuepoint.models import (
    Base,
    InventoryItem,
    InventoryUnit,
    MenuItem,
    Order,
    OrderCounter,
    Pc,
    PcStatus,
    Principal,
    PrincipalRole,
)
from queuepoint.security.passwords import hash_password
from queuepoint.services.inventory_service import InventoryItemInput, add_item_in_session
from queuepoint.services.menu_service import create_menu_item
from queuepoint.services.order_service import ORDER_COUNTER_ID

PC_COUNT = 20

DEMO_MENU = [
    ('Coke (in can)', 'Chilled Coca-Cola softdrink', '15.00', 'drinks', []),
    ('Bottled Water', '500ml purified bottled water', '15.00', 'drinks', []),
    ('Iced Coffee', 'Ready-to-drink iced coffee', '25.00', 'drinks', []),
    ('Potato Chips', 'Assorted flavored chips', '10.00', 'snacks', []),
    (
        'Cup Noodles',
        'Instant cup noodles',
        '17.00',
        'snacks',
        [{'name': 'Beef flavor', 'price': '0'}, {'name': 'Chicken flavor', 'price': '0'}],
    ),
    (
        'Silog Meal',
        'Garlic rice, egg and choice of meat',
        '50.00',
        'meals',
        [{'name': 'Extra Rice', 'price': '10.00'}, {'name': 'Extra Egg', 'price': '12.00'}],
    ),
    ('Leche Flan', 'Caramel custard', '30.00', 'desserts', []),
]

DEMO_INVENTORY_ROWS = [
    # sku, name, category, unit, stock, reorder threshold, cost
    ('BEV-COKE-330', 'Coke 330ml can', 'drinks', InventoryUnit.PCS, '48', '12', '11.50'),
    ('SNK-NOODLE-CUP', 'Cup noodles', 'snacks', InventoryUnit.PCS, '30', '10', '12.00'),
    ('ING-RICE', 'Rice', 'ingredients', InventoryUnit.KG, '25', '5', '52.00'),
    ('ING-EGG', 'Eggs', 'ingredients', InventoryUnit.PACK, '4', '4', '210.00'),
]


def _ensure_principal(db, email: str, password: str, role: PrincipalRole) -> None:
    existing = db.execute(select(Principal).where(Principal.email == email)).scalar_one_or_none()
    if existing:
        return
    db.add(Principal(email=email, password_hash=hash_password(password), role=role, active=True))


def seed() -> None:
    Base.metadata.create_all(engine)
    with SessionLocal() as db:
        existing_numbers = set(db.execute(select(Pc.pc_number)).scalars().all())
        for index in range(1, PC_COUNT + 1):
            pc_number = f'PC-{index}'
            if pc_number not in existing_numbers:
                db.add(Pc(pc_number=pc_number, status=PcStatus.OFFLINE))

        if not db.execute(select(func.count(MenuItem.id))).scalar_one():
            for name, description, price, category, options in DEMO_MENU:
                create_menu_item(
                    db,
                    name=name,
                    description=description,
                    price=Decimal(price),
                    category=category,
                    customization_options=options,
                )

        for sku, name, category, unit, stock, threshold, cost in DEMO_INVENTORY_ROWS:
            if db.execute(select(InventoryItem.id).where(InventoryItem.sku == sku)).scalar_one_or_none():
                continue
            add_item_in_session(
                db,
                InventoryItemInput(
                    sku=sku,
                    name=name,
                    category=category,
                    unit=unit,
                    stock=Decimal(stock),
                    reorder_threshold=Decimal(threshold),
                    cost_price=Decimal(cost),
                ),
            )

        counter = db.get(OrderCounter, ORDER_COUNTER_ID)
        if counter is None:
            current_max = db.execute(select(func.max(Order.order_number))).scalar_one_or_none() or 0
            db.add(OrderCounter(id=ORDER_COUNTER_ID, last_number=current_max))

        _ensure_principal(db, 'admin@queuepoint.local', 'adminpass', PrincipalRole.ADMIN)
        _ensure_principal(db, 'kitchen@queuepoint.local', 'kitchenpass', PrincipalRole.STAFF)

        db.commit()


if __name__ == '__main__':
    seed()
    print('Seed data inserted/verified.')
