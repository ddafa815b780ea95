"""
재고 서비스 - 레시피 조회, 재고 확인, 재고 차감
Recipe resolution, stock availability checks and set-based inventory deduction

모든 함수는 호출자의 트랜잭션 세션(db) 안에서 실행되며 commit/rollback을 하지 않는다.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable

from sqlalchemy import case, literal, select, update
from sqlalchemy.orm import Session

from .errors import InsufficientStockError
from .schema import drink_recipes, inventory

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RecipeEntry:
    ingredient_id: int
    quantity_per_unit: Decimal


@dataclass(frozen=True)
class Deduction:
    ingredient_id: int
    amount: Decimal


def _to_decimal(value) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


class InventoryService:
    """레시피 기반 재고 확인 및 차감"""

    @staticmethod
    def resolve_recipe(db: Session, menu_item_id: int) -> list[RecipeEntry]:
        """메뉴 항목의 재료 소모 목록 조회 (재료 ID, 단위당 수량)"""
        query = (
            select(drink_recipes.c.inventory_id, drink_recipes.c.quantity)
            .where(drink_recipes.c.drink_id == menu_item_id)
            .order_by(drink_recipes.c.inventory_id)
        )
        rows = db.execute(query).fetchall()
        return [RecipeEntry(int(row[0]), _to_decimal(row[1])) for row in rows]

    @staticmethod
    def resolve_recipes(db: Session, menu_item_ids: Iterable[int]) -> dict[int, list[RecipeEntry]]:
        """여러 메뉴 항목의 레시피를 한 번의 쿼리로 조회"""
        ids = sorted(set(menu_item_ids))
        recipes: dict[int, list[RecipeEntry]] = {item_id: [] for item_id in ids}
        if not ids:
            return recipes

        query = (
            select(drink_recipes.c.drink_id, drink_recipes.c.inventory_id, drink_recipes.c.quantity)
            .where(drink_recipes.c.drink_id.in_(ids))
            .order_by(drink_recipes.c.drink_id, drink_recipes.c.inventory_id)
        )
        for drink_id, inventory_id, quantity in db.execute(query).fetchall():
            recipes[int(drink_id)].append(RecipeEntry(int(inventory_id), _to_decimal(quantity)))
        return recipes

    @staticmethod
    def lock_ingredients(db: Session, ingredient_ids: Iterable[int]) -> dict[int, Decimal]:
        """재료 행을 ID 오름차순으로 잠그고 현재 재고 반환

        동시 주문이 같은 재료를 서로 다른 순서로 잠가 교착되지 않도록
        주문당 한 번, 항상 같은 순서로 잠근다.
        """
        ids = sorted(set(ingredient_ids))
        if not ids:
            return {}

        query = (
            select(inventory.c.item_id, inventory.c.supply)
            .where(inventory.c.item_id.in_(ids))
            .order_by(inventory.c.item_id)
            .with_for_update()
        )
        return {int(row[0]): _to_decimal(row[1]) for row in db.execute(query).fetchall()}

    @staticmethod
    def calculate_requirements(
        recipe: Iterable[RecipeEntry],
        quantity: int
    ) -> dict[int, Decimal]:
        needed: dict[int, Decimal] = defaultdict(lambda: Decimal("0"))
        for entry in recipe:
            needed[entry.ingredient_id] += entry.quantity_per_unit * quantity
        return dict(needed)

    @staticmethod
    def check_availability(
        db: Session,
        menu_item_id: int,
        quantity: int,
        pending: dict[int, Decimal] | None = None,
        recipe: list[RecipeEntry] | None = None,
        supply: dict[int, Decimal] | None = None
    ) -> bool:
        """재고 충분 여부 확인 (변경 없음)

        pending: 같은 주문의 앞선 항목이 이미 확보한 재료량. 확인에 성공하면
        이번 항목의 필요량을 더해 갱신한다.
        recipe/supply: 호출자가 이미 조회/잠금한 값이 있으면 다시 조회하지 않음
        """
        if recipe is None:
            recipe = InventoryService.resolve_recipe(db, menu_item_id)
        if not recipe:
            # 재고를 추적하지 않는 항목 (서비스 요금 등)
            return True

        needed = InventoryService.calculate_requirements(recipe, quantity)
        if supply is None:
            supply = InventoryService.lock_ingredients(db, needed.keys())
        claimed = pending if pending is not None else {}

        for ingredient_id, needed_qty in needed.items():
            available = supply.get(ingredient_id, Decimal("0")) - claimed.get(ingredient_id, Decimal("0"))
            if available < needed_qty:
                logger.info(
                    f"재고 부족: menu_item={menu_item_id}, ingredient={ingredient_id}, "
                    f"필요={needed_qty}, 가용={available}"
                )
                return False

        if pending is not None:
            for ingredient_id, needed_qty in needed.items():
                pending[ingredient_id] = pending.get(ingredient_id, Decimal("0")) + needed_qty
        return True

    @staticmethod
    def deduct_inventory(
        db: Session,
        lines: Iterable[tuple[int, int]],
        item_names: dict[int, str] | None = None
    ) -> list[Deduction]:
        """(메뉴 항목 ID, 수량) 목록의 재료를 단일 UPDATE 문으로 차감

        재고가 차감량보다 적은 재료는 갱신되지 않으며, 그 경우
        InsufficientStockError를 발생시켜 주문 전체를 롤백시킨다.
        """
        line_list = [(int(menu_item_id), int(quantity)) for menu_item_id, quantity in lines]
        if not line_list:
            return []

        recipes = InventoryService.resolve_recipes(db, [menu_item_id for menu_item_id, _ in line_list])
        totals: dict[int, Decimal] = defaultdict(lambda: Decimal("0"))
        first_consumer: dict[int, int] = {}
        for menu_item_id, quantity in line_list:
            for ingredient_id, amount in InventoryService.calculate_requirements(
                recipes[menu_item_id], quantity
            ).items():
                totals[ingredient_id] += amount
                first_consumer.setdefault(ingredient_id, menu_item_id)

        if not totals:
            return []

        ingredient_ids = sorted(totals)
        amount_by_id = case(
            {
                ingredient_id: literal(totals[ingredient_id], inventory.c.supply.type)
                for ingredient_id in ingredient_ids
            },
            value=inventory.c.item_id,
        )
        statement = (
            update(inventory)
            .where(inventory.c.item_id.in_(ingredient_ids))
            .where(inventory.c.supply >= amount_by_id)
            .values(supply=inventory.c.supply - amount_by_id)
        )
        result = db.execute(statement)

        if result.rowcount != len(ingredient_ids):
            remaining = InventoryService.lock_ingredients(db, ingredient_ids)
            short = [
                ingredient_id for ingredient_id in ingredient_ids
                if remaining.get(ingredient_id, Decimal("0")) < totals[ingredient_id]
            ]
            menu_item_id = first_consumer[short[0]] if short else line_list[0][0]
            names = item_names or {}
            logger.warning(f"재고 차감 실패 (동시 주문 경합): ingredients={short}")
            raise InsufficientStockError(names.get(menu_item_id, f"item #{menu_item_id}"))

        deductions = [Deduction(ingredient_id, totals[ingredient_id]) for ingredient_id in ingredient_ids]
        logger.info(f"재고 차감 완료: {len(deductions)}개 재료")
        return deductions
