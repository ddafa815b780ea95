"""
로열티 포인트 서비스 - 주문 완료 시 포인트 적립/사용 및 누적 결제액 반영
적립: 소계 1달러당 POINTS_PER_DOLLAR 포인트 (내림)
사용: 1포인트당 POINT_REDEMPTION_VALUE 달러 할인
"""

import logging
from decimal import Decimal, ROUND_CEILING, ROUND_FLOOR, ROUND_HALF_UP

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from .config import settings
from .errors import InsufficientPointsError
from .schema import customers

# 로깅 설정
logger = logging.getLogger(__name__)


class LoyaltyService:
    """고객 포인트 원장 관련 비즈니스 로직 처리"""

    POINTS_PER_DOLLAR = settings.POINTS_PER_DOLLAR
    POINT_REDEMPTION_VALUE = Decimal(str(settings.POINT_REDEMPTION_VALUE))
    ANONYMOUS_ID = settings.ANONYMOUS_ID

    @classmethod
    def is_anonymous(cls, customer_id: int | None) -> bool:
        return customer_id is None or customer_id == cls.ANONYMOUS_ID

    @classmethod
    def calculate_points_earned(cls, subtotal: Decimal) -> int:
        """주문 소계 기준 적립 포인트 (주문당 한 번 계산)"""
        earned = (subtotal * cls.POINTS_PER_DOLLAR).to_integral_value(rounding=ROUND_FLOOR)
        return max(0, int(earned))

    @classmethod
    def calculate_redemption_discount(cls, points: int, subtotal: Decimal) -> Decimal:
        """포인트 사용 할인 금액 (소계를 넘지 않음)"""
        if points <= 0:
            return Decimal("0.00")
        discount = (cls.POINT_REDEMPTION_VALUE * points).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
        return min(discount, subtotal)

    @classmethod
    def points_for_discount(cls, discount: Decimal, requested: int) -> int:
        """할인 금액을 만드는 데 실제로 필요한 포인트 (요청량을 넘지 않음)"""
        if discount <= 0:
            return 0
        needed = (discount / cls.POINT_REDEMPTION_VALUE).to_integral_value(rounding=ROUND_CEILING)
        return min(requested, int(needed))

    @staticmethod
    def lock_balance(db: Session, customer_id: int) -> int | None:
        """고객 포인트 잔액 조회 및 행 잠금 (고객이 없으면 None)"""
        query = (
            select(customers.c.points)
            .where(customers.c.customers_id == customer_id)
            .with_for_update()
        )
        row = db.execute(query).fetchone()
        return int(row[0]) if row else None

    @classmethod
    def ensure_redeemable(cls, db: Session, customer_id: int, points_to_redeem: int) -> int:
        """사용 요청 포인트가 현재 잔액 이하인지 확인하고 잔액 반환"""
        balance = cls.lock_balance(db, customer_id) or 0
        if points_to_redeem > balance:
            logger.warning(
                f"포인트 부족: customer_id={customer_id}, 요청={points_to_redeem}, 잔액={balance}"
            )
            raise InsufficientPointsError(customer_id, points_to_redeem, balance)
        return balance

    @classmethod
    def apply_order(
        cls,
        db: Session,
        customer_id: int,
        points_earned: int,
        points_redeemed: int,
        order_subtotal: Decimal
    ) -> bool:
        """포인트 적립/사용 및 누적 결제액을 단일 UPDATE로 반영

        주의: db.commit()은 호출하지 않음 - 호출하는 쪽에서 트랜잭션 관리
        잔액을 0으로 보정하지 않는다. 사용 한도 검증은 ensure_redeemable에서 수행.
        """
        if cls.is_anonymous(customer_id):
            return False

        statement = (
            update(customers)
            .where(customers.c.customers_id == customer_id)
            .values(
                points=customers.c.points + (points_earned - points_redeemed),
                total_spent=customers.c.total_spent + order_subtotal,
            )
        )
        result = db.execute(statement)
        if result.rowcount == 0:
            logger.warning(f"로열티 반영 대상 고객 없음: customer_id={customer_id}")
            return False

        logger.info(
            f"로열티 반영: customer_id={customer_id}, 적립={points_earned}, "
            f"사용={points_redeemed}, 소계={order_subtotal}"
        )
        return True
