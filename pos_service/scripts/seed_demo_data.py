#!/usr/bin/env python3
"""데모용 메뉴/재고/레시피/고객 데이터 입력 스크립트"""
import os
import sys

# 프로젝트 루트를 Python path에 추가
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from dotenv import load_dotenv
from sqlalchemy import delete, insert

load_dotenv()

from backend.services.database import get_engine, init_database
from backend.services.schema import customers, drink_recipes, employees, inventory, menu_items

MENU = [
    {"item_id": 1, "item_name": "Classic Milk Tea", "cost": 4.25, "category": "Milk Tea"},
    {"item_id": 2, "item_name": "Taro Milk Tea", "cost": 4.50, "category": "Milk Tea"},
    {"item_id": 3, "item_name": "Mango Green Tea", "cost": 4.75, "category": "Fruit Tea"},
    {"item_id": 4, "item_name": "Passion Fruit Tea", "cost": 4.75, "category": "Fruit Tea"},
    {"item_id": 5, "item_name": "Brown Sugar Latte", "cost": 5.25, "category": "Specialty"},
]

INVENTORY = [
    {"item_id": 1, "item_name": "Tapioca", "supply": 500, "unit": "scoop", "cost": 0.20},
    {"item_id": 2, "item_name": "Milk", "supply": 300, "unit": "cup", "cost": 0.35},
    {"item_id": 3, "item_name": "Black Tea", "supply": 400, "unit": "cup", "cost": 0.15},
    {"item_id": 4, "item_name": "Taro Powder", "supply": 200, "unit": "scoop", "cost": 0.40},
    {"item_id": 5, "item_name": "Green Tea", "supply": 400, "unit": "cup", "cost": 0.15},
    {"item_id": 6, "item_name": "Mango Syrup", "supply": 150, "unit": "pump", "cost": 0.30},
    {"item_id": 7, "item_name": "Passion Fruit Syrup", "supply": 150, "unit": "pump", "cost": 0.30},
    {"item_id": 8, "item_name": "Brown Sugar", "supply": 250, "unit": "pump", "cost": 0.10},
]

# (메뉴 ID, 재료 ID, 단위당 수량)
RECIPES = [
    (1, 1, 2), (1, 2, 1), (1, 3, 1),
    (2, 1, 2), (2, 2, 1), (2, 4, 1),
    (3, 5, 1), (3, 6, 2),
    (4, 5, 1), (4, 7, 2),
    (5, 1, 2), (5, 2, 2), (5, 8, 2),
]


def main():
    engine = get_engine()
    init_database(engine)

    with engine.begin() as conn:
        for table in (drink_recipes, menu_items, inventory, customers, employees):
            conn.execute(delete(table))

        conn.execute(insert(menu_items), MENU)
        conn.execute(insert(inventory), INVENTORY)
        conn.execute(insert(drink_recipes), [
            {"drink_id": drink_id, "inventory_id": inventory_id, "quantity": quantity}
            for drink_id, inventory_id, quantity in RECIPES
        ])
        conn.execute(insert(employees), [
            {"employee_id": 1, "employee_name": "Cashier One"},
            {"employee_id": 2, "employee_name": "Cashier Two"},
        ])
        conn.execute(insert(customers), [
            {"customers_id": 1, "customer_name": "Demo Member", "phone_number": "5550100", "points": 50, "total_spent": 0},
        ])

    print(f"메뉴 {len(MENU)}개, 재료 {len(INVENTORY)}개, 레시피 {len(RECIPES)}개 입력 완료")


if __name__ == "__main__":
    main()
