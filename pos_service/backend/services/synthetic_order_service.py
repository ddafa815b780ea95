"""
합성 주문 생성 서비스 - 데모/부하 테스트용 주문을 실제 주문과 같은 경로로 생성
Synthetic order generator that drives the regular fulfillment pipeline

- 영업 시간대(현지 시각)에 따라 실행당 주문 수 결정 (점심/저녁 피크)
- 주 단위로 고정된 선호 카테고리/메뉴에 가중치 부여
- 생성된 장바구니는 OrderService.fulfill_order로 처리 (검증/재고/원장 동일)
"""

import logging
import random
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable
from zoneinfo import ZoneInfo

from sqlalchemy import select
from sqlalchemy.orm import Session

from .config import settings
from .errors import InsufficientStockError, ValidationError
from .order_service import OrderService
from .schema import employees, menu_items

logger = logging.getLogger(__name__)

FAVORITE_MULTIPLIER = 4
LUNCH_PEAK = range(11, 14)
DINNER_PEAK = range(17, 21)


@dataclass(frozen=True)
class MenuEntry:
    item_id: int
    item_name: str
    cost: Decimal
    category: str


@dataclass(frozen=True)
class WeeklyFavorite:
    category: str | None = None
    item_id: int | None = None


def business_hour_and_week_key(now: datetime, tz_name: str) -> tuple[int, int]:
    """영업 현지 시각(0-23)과 주 단위 키(예: 2025년 13주 -> 202513) 계산"""
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    local = now.astimezone(ZoneInfo(tz_name))
    day_of_year = local.timetuple().tm_yday
    week = (day_of_year - 1) // 7 + 1
    return local.hour, local.year * 100 + week


def is_peak_hour(hour: int) -> bool:
    return hour in LUNCH_PEAK or hour in DINNER_PEAK


class SyntheticOrderService:
    """합성 주문 생성기"""

    def __init__(
        self,
        order_service: OrderService,
        rng: random.Random | None = None,
        clock: Callable[[], datetime] | None = None,
        tz_name: str | None = None
    ):
        self.order_service = order_service
        self.rng = rng or random.Random()
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.tz_name = tz_name or settings.BUSINESS_TIMEZONE

    # ------------------------------------------------------------------
    # 데이터 로드
    # ------------------------------------------------------------------

    def load_menu(self) -> list[MenuEntry]:
        def _load(db: Session) -> list[MenuEntry]:
            query = select(
                menu_items.c.item_id, menu_items.c.item_name, menu_items.c.cost, menu_items.c.category
            ).order_by(menu_items.c.item_id)
            return [
                MenuEntry(
                    item_id=int(row.item_id),
                    item_name=row.item_name,
                    cost=Decimal(str(row.cost or 0)),
                    category=(row.category or "Uncategorized").strip() or "Uncategorized",
                )
                for row in db.execute(query).fetchall()
            ]

        return self.order_service.coordinator.run(_load)

    def load_employee_ids(self) -> list[int]:
        def _load(db: Session) -> list[int]:
            query = select(employees.c.employee_id).order_by(employees.c.employee_id)
            return [int(row[0]) for row in db.execute(query).fetchall()]

        return self.order_service.coordinator.run(_load)

    # ------------------------------------------------------------------
    # 생성 규칙
    # ------------------------------------------------------------------

    def decide_order_count(self, hour: int) -> int:
        roll = self.rng.random()
        if is_peak_hour(hour):
            return 2 if roll < 0.6 else 3
        if roll < 0.5:
            return 0
        if roll < 0.9:
            return 1
        return 2

    @staticmethod
    def choose_weekly_favorite(menu: list[MenuEntry], week_key: int) -> WeeklyFavorite:
        """주 단위로 고정된 선호 항목 선택 (같은 주에는 항상 같은 결과)"""
        week_rng = random.Random(week_key)
        categories = sorted({entry.category for entry in menu if entry.category})
        if categories and week_rng.random() < 0.5:
            return WeeklyFavorite(category=week_rng.choice(categories))
        return WeeklyFavorite(item_id=week_rng.choice(menu).item_id)

    def pick_menu_item(self, menu: list[MenuEntry], favorite: WeeklyFavorite) -> MenuEntry:
        weights = []
        for entry in menu:
            if favorite.item_id is not None and entry.item_id == favorite.item_id:
                weights.append(FAVORITE_MULTIPLIER)
            elif favorite.category and entry.category == favorite.category:
                weights.append(FAVORITE_MULTIPLIER)
            else:
                weights.append(1)
        return self.rng.choices(menu, weights=weights, k=1)[0]

    def build_cart(
        self,
        menu: list[MenuEntry],
        favorite: WeeklyFavorite,
        employee_ids: list[int]
    ) -> dict:
        """1-4개 항목, 항목당 1-3개의 장바구니 생성 (중복 항목은 합산)"""
        aggregated: dict[int, dict] = {}
        for _ in range(self.rng.randint(1, 4)):
            entry = self.pick_menu_item(menu, favorite)
            quantity = self.rng.randint(1, 3)
            if entry.item_id in aggregated:
                aggregated[entry.item_id]["quantity"] += quantity
            else:
                aggregated[entry.item_id] = {
                    "menu_item_id": entry.item_id,
                    "item_name": entry.item_name,
                    "unit_price": str(entry.cost),
                    "quantity": quantity,
                }

        return {
            "items": list(aggregated.values()),
            "payment_method": self.rng.choice(settings.PAYMENT_METHODS),
            "customer_id": settings.ANONYMOUS_ID,
            "cashier_id": self.rng.choice(employee_ids) if employee_ids else settings.ANONYMOUS_ID,
        }

    # ------------------------------------------------------------------
    # 실행
    # ------------------------------------------------------------------

    def create_synthetic_order(
        self,
        menu: list[MenuEntry],
        favorite: WeeklyFavorite,
        employee_ids: list[int]
    ) -> int | None:
        """합성 주문 1건 생성 - 재고 부족이거나 장바구니가 거부되면 None"""
        if not menu:
            return None

        cart = self.build_cart(menu, favorite, employee_ids)
        try:
            receipt = self.order_service.fulfill_order(cart, source="synthetic")
        except InsufficientStockError as e:
            logger.warning(f"합성 주문 건너뜀 (재고 부족): {e.item_name}")
            return None
        except ValidationError as e:
            logger.warning(f"합성 주문 건너뜀 (장바구니 거부): {e.message}")
            return None

        for deduction in receipt.deductions:
            logger.debug(f"합성 주문 #{receipt.order_id} 재고 차감: inventory_id={deduction.ingredient_id}, amount={deduction.amount}")
        logger.info(f"합성 주문 생성: #{receipt.order_id}")
        return receipt.order_id

    def run_once(self) -> list[int]:
        """1회 실행 - 생성된 주문번호 목록 반환"""
        menu = self.load_menu()
        if not menu:
            logger.warning("메뉴가 없어 합성 주문을 생성할 수 없습니다.")
            return []

        employee_ids = self.load_employee_ids()
        hour, week_key = business_hour_and_week_key(self.clock(), self.tz_name)
        peak = is_peak_hour(hour)

        orders_count = self.decide_order_count(hour)
        if orders_count == 0:
            logger.info(f"비피크 시간대({hour}시), 이번 실행에서 생성한 합성 주문 없음")
            return []

        favorite = self.choose_weekly_favorite(menu, week_key)
        if favorite.category:
            logger.info(f"{week_key} 주간 선호 카테고리: {favorite.category}")
        else:
            logger.info(f"{week_key} 주간 선호 메뉴: #{favorite.item_id}")

        order_ids: list[int] = []
        for _ in range(orders_count):
            order_id = self.create_synthetic_order(menu, favorite, employee_ids)
            if order_id is not None:
                order_ids.append(order_id)

        logger.info(
            f"합성 주문 {len(order_ids)}건 생성 ({hour}시, 피크: {peak})"
        )
        return order_ids
