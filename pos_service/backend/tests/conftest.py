from decimal import Decimal
from typing import Any

import pytest
from sqlalchemy import insert, select
from sqlalchemy.orm import sessionmaker

from backend.services.database import TransactionCoordinator, create_db_engine
from backend.services.order_service import OrderService
from backend.services.schema import (
    customers,
    drink_recipes,
    employees,
    inventory,
    menu_items,
    metadata,
    order_history,
    orders,
)

TAPIOCA = 1
MILK = 2
TARO_MILK_TEA = 10
PEACH_TEA = 11
SERVICE_FEE = 12
MEMBER_ID = 7


@pytest.fixture
def engine(tmp_path):
    """테스트마다 독립된 SQLite 파일 DB"""
    db_engine = create_db_engine(
        f"sqlite:///{tmp_path / 'pos_test.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    metadata.create_all(db_engine)
    yield db_engine
    db_engine.dispose()


@pytest.fixture
def coordinator(engine):
    return TransactionCoordinator(sessionmaker(autoflush=False, bind=engine))


@pytest.fixture
def order_service(coordinator):
    return OrderService(coordinator)


@pytest.fixture
def seeded(engine):
    """Taro Milk Tea -> 2 x Tapioca(재고 10), 1 x Milk(재고 5)"""
    with engine.begin() as conn:
        conn.execute(insert(menu_items), [
            {"item_id": TARO_MILK_TEA, "item_name": "Taro Milk Tea", "cost": Decimal("4.50"), "category": "Milk Tea"},
            {"item_id": PEACH_TEA, "item_name": "Peach Tea", "cost": Decimal("3.75"), "category": "Fruit Tea"},
            {"item_id": SERVICE_FEE, "item_name": "Service Fee", "cost": Decimal("1.00"), "category": "Other"},
        ])
        conn.execute(insert(inventory), [
            {"item_id": TAPIOCA, "item_name": "Tapioca", "supply": Decimal("10"), "unit": "scoop", "cost": Decimal("0.20")},
            {"item_id": MILK, "item_name": "Milk", "supply": Decimal("5"), "unit": "cup", "cost": Decimal("0.35")},
        ])
        conn.execute(insert(drink_recipes), [
            {"drink_id": TARO_MILK_TEA, "inventory_id": TAPIOCA, "quantity": Decimal("2")},
            {"drink_id": TARO_MILK_TEA, "inventory_id": MILK, "quantity": Decimal("1")},
            {"drink_id": PEACH_TEA, "inventory_id": TAPIOCA, "quantity": Decimal("1")},
        ])
        conn.execute(insert(customers), [
            {"customers_id": MEMBER_ID, "customer_name": "Member", "phone_number": "5550107",
             "points": 100, "total_spent": Decimal("20.00")},
        ])
        conn.execute(insert(employees), [
            {"employee_id": 3, "employee_name": "Cashier"},
        ])
    return engine


def set_supply(engine, ingredient_id: int, supply) -> None:
    with engine.begin() as conn:
        conn.execute(
            inventory.update().where(inventory.c.item_id == ingredient_id).values(supply=Decimal(str(supply)))
        )


def supply_of(engine, ingredient_id: int) -> Decimal:
    with engine.begin() as conn:
        value = conn.execute(select(inventory.c.supply).where(inventory.c.item_id == ingredient_id)).scalar_one()
    return Decimal(str(value))


def customer_row(engine, customer_id: int = MEMBER_ID) -> Any:
    with engine.begin() as conn:
        return conn.execute(
            select(customers.c.points, customers.c.total_spent).where(customers.c.customers_id == customer_id)
        ).fetchone()


def count_rows(engine, table) -> int:
    with engine.begin() as conn:
        return len(conn.execute(select(table)).fetchall())


def order_counts(engine) -> tuple[int, int]:
    return count_rows(engine, orders), count_rows(engine, order_history)


def taro_cart(quantity: int = 2, **extra: Any) -> dict[str, Any]:
    cart = {
        "items": [
            {"menu_item_id": TARO_MILK_TEA, "item_name": "Taro Milk Tea", "unit_price": 4.50, "quantity": quantity}
        ]
    }
    cart.update(extra)
    return cart
