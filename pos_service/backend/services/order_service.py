"""
주문 처리 서비스 - 장바구니 검증, 재고 확인/차감, 주문 원장 기록, 로열티 반영
Order fulfillment service - turns a submitted cart into a durable order

하나의 주문에 대한 모든 변경은 TransactionCoordinator 범위 안에서 수행되며,
실패 시 주문/주문 항목/재고/로열티 모두 트랜잭션 이전 상태로 되돌아간다.
"""

import logging
import math
import re
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import Annotated, Any, Mapping

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    ValidationError as PydanticValidationError,
    field_validator,
    model_validator,
)
from sqlalchemy import insert, select, update
from sqlalchemy.orm import Session

from .config import settings
from .database import TransactionCoordinator
from .errors import InsufficientStockError, ValidationError
from .inventory_service import Deduction, InventoryService
from .loyalty_service import LoyaltyService
from .schema import ORDER_ID_SEQ, menu_items, order_history, order_id_counter, orders

# 로깅 설정
logger = logging.getLogger(__name__)

CENT = Decimal("0.01")

# INTEGER 컬럼 범위 (PostgreSQL int4)
MAX_DB_INT = 2**31 - 1
MAX_LINE_QUANTITY = 999
MAX_CART_LINES = 100
MAX_UNIT_PRICE = Decimal("9999.99")
INTEGER_LITERAL = re.compile(r"[+-]?\d+")


def _first(payload: Mapping[str, Any], *keys: str) -> Any:
    """여러 필드명 중 처음으로 값이 있는 항목 반환 (키오스크/캐셔 필드명 호환)"""
    for key in keys:
        value = payload.get(key)
        if value is not None:
            return value
    return None


def _reject_bool(value: Any) -> Any:
    # bool은 int의 하위 타입이라 pydantic lax 모드에서 1/0으로 통과됨
    if isinstance(value, bool):
        raise ValueError(f"expected a number, got {value!r}")
    return value


def _integer_literal(value: Any) -> Any:
    """ID 입력: 정수 표기 문자열만 허용 ("1e6", "3.0" 거부)"""
    value = _reject_bool(value)
    if isinstance(value, str) and not INTEGER_LITERAL.fullmatch(value.strip()):
        raise ValueError(f"expected an integer, got {value!r}")
    return value


class CartLine(BaseModel):
    """장바구니 한 줄 (주문 시점의 이름/가격 스냅샷)"""

    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    menu_item_id: Annotated[int, Field(
        gt=0, le=MAX_DB_INT, validation_alias=AliasChoices("menu_item_id", "item_id")
    )]
    item_name: Annotated[str, Field(
        min_length=1, max_length=120, validation_alias=AliasChoices("item_name", "name")
    )]
    unit_price: Annotated[Decimal, Field(
        ge=0, le=MAX_UNIT_PRICE, validation_alias=AliasChoices("unit_price", "cost", "price")
    )]
    quantity: Annotated[int, Field(
        ge=1, le=MAX_LINE_QUANTITY, validation_alias=AliasChoices("quantity", "qty")
    )]
    customization: dict[str, Any] | None = None

    @model_validator(mode="before")
    @classmethod
    def default_item_name(cls, data: Any) -> Any:
        if isinstance(data, Mapping):
            name = _first(data, "item_name", "name")
            if not (isinstance(name, str) and name.strip()):
                data = {**data, "item_name": f"Item #{_first(data, 'menu_item_id', 'item_id')}"}
        return data

    @field_validator("menu_item_id", mode="before")
    @classmethod
    def integer_item_id(cls, value: Any) -> Any:
        return _integer_literal(value)

    @field_validator("unit_price", mode="before")
    @classmethod
    def reject_bool_price(cls, value: Any) -> Any:
        return _reject_bool(value)

    @field_validator("quantity", mode="before")
    @classmethod
    def floor_quantity(cls, value: Any) -> Any:
        """소수 수량은 내림 (2.9 -> 2), 1 미만이면 ge 제약에서 거부"""
        value = _reject_bool(value)
        if isinstance(value, float) and math.isfinite(value):
            return math.floor(value)
        return value

    @field_validator("unit_price")
    @classmethod
    def round_price(cls, value: Decimal) -> Decimal:
        return value.quantize(CENT, rounding=ROUND_HALF_UP)

    @field_validator("customization")
    @classmethod
    def empty_customization_is_none(cls, value: dict[str, Any] | None) -> dict[str, Any] | None:
        return value or None

    @property
    def line_total(self) -> Decimal:
        return (self.unit_price * self.quantity).quantize(CENT, rounding=ROUND_HALF_UP)


class ValidatedCart(BaseModel):
    """검증이 끝난 장바구니 - 이 경계 이후로는 원본 요청 데이터를 다루지 않음"""

    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    lines: Annotated[tuple[CartLine, ...], Field(
        max_length=MAX_CART_LINES, validation_alias=AliasChoices("lines", "items", "cart")
    )]
    customer_id: Annotated[int, Field(
        default=settings.ANONYMOUS_ID, ge=0, le=MAX_DB_INT,
        validation_alias=AliasChoices("customer_id", "customerId", "customerid"),
    )]
    cashier_id: Annotated[int, Field(
        default=settings.ANONYMOUS_ID, ge=0, le=MAX_DB_INT,
        validation_alias=AliasChoices("cashier_id", "employeeId", "employee_id"),
    )]
    payment_method: Annotated[str, Field(
        default=settings.DEFAULT_PAYMENT_METHOD,
        validation_alias=AliasChoices("payment_method", "paymentmethod"),
    )]
    points_to_redeem: Annotated[int, Field(
        default=0, ge=0, le=MAX_DB_INT,
        validation_alias=AliasChoices("points_to_redeem", "pointsRedeemed"),
    )]

    @field_validator("lines", mode="before")
    @classmethod
    def require_lines(cls, value: Any) -> Any:
        if value is None or (isinstance(value, (list, tuple)) and not value):
            raise ValueError("Cart is empty")
        return value

    @field_validator("customer_id", "cashier_id", mode="before")
    @classmethod
    def default_person_id(cls, value: Any) -> Any:
        return settings.ANONYMOUS_ID if value is None else _integer_literal(value)

    @field_validator("points_to_redeem", mode="before")
    @classmethod
    def default_points(cls, value: Any) -> Any:
        return 0 if value is None else _integer_literal(value)

    @field_validator("payment_method", mode="before")
    @classmethod
    def normalize_payment_method(cls, value: Any) -> Any:
        if value is None or (isinstance(value, str) and not value.strip()):
            return settings.DEFAULT_PAYMENT_METHOD
        if isinstance(value, str):
            value = value.strip().lower()
            if value not in settings.PAYMENT_METHODS:
                raise ValueError(f"Unsupported payment method: {value}")
        return value

    @model_validator(mode="after")
    def members_only_redeem(self) -> "ValidatedCart":
        if self.points_to_redeem and LoyaltyService.is_anonymous(self.customer_id):
            raise ValueError("Points can only be redeemed by a member")
        return self

    @property
    def subtotal(self) -> Decimal:
        return sum((line.line_total for line in self.lines), Decimal("0.00"))

    @property
    def is_anonymous(self) -> bool:
        return LoyaltyService.is_anonymous(self.customer_id)


@dataclass(frozen=True)
class OrderReceipt:
    order_id: int
    subtotal: Decimal
    discount_amount: Decimal
    total_due: Decimal
    points_earned: int
    points_redeemed: int
    line_count: int
    deductions: list[Deduction] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "orderid": self.order_id,
            "subtotal": float(self.subtotal),
            "discount_amount": float(self.discount_amount),
            "total_due": float(self.total_due),
            "points_earned": self.points_earned,
            "points_redeemed": self.points_redeemed,
            "line_count": self.line_count,
            "deductions": [
                {"inventory_id": d.ingredient_id, "amount": float(d.amount)}
                for d in self.deductions
            ],
        }


def _describe(error: PydanticValidationError) -> str:
    """pydantic 오류 중 첫 번째를 클라이언트용 메시지로 변환"""
    first = error.errors()[0]
    if first["type"] == "value_error":
        return str(first["ctx"]["error"])
    location = ".".join(str(part) for part in first["loc"])
    if not location:
        return "Order body must be an object"
    return f"Invalid {location}: {first['msg']}"


class OrderService:
    """주문 관련 비즈니스 로직 처리"""

    def __init__(self, coordinator: TransactionCoordinator):
        self.coordinator = coordinator

    # ------------------------------------------------------------------
    # 검증 (트랜잭션 진입 전)
    # ------------------------------------------------------------------

    @staticmethod
    def validate_cart(payload: Any) -> ValidatedCart:
        """요청 본문을 검증해 ValidatedCart 생성 - 실패 시 ValidationError"""
        try:
            return ValidatedCart.model_validate(payload)
        except PydanticValidationError as e:
            raise ValidationError(_describe(e)) from e

    # ------------------------------------------------------------------
    # 주문 처리 (단일 트랜잭션)
    # ------------------------------------------------------------------

    def fulfill_order(self, payload: Any, source: str = "pos") -> OrderReceipt:
        """주문 생성 - 성공 시 영수증(주문번호 포함) 반환

        ValidationError: 장바구니 형식 오류 (트랜잭션 진입 전)
        InsufficientStockError: 재고 부족 (쓰기 전에 감지, 롤백)
        TransactionError: 그 외 저장소 오류 (롤백)
        """
        cart = payload if isinstance(payload, ValidatedCart) else self.validate_cart(payload)

        receipt = self.coordinator.run(lambda db: self._fulfill(db, cart, source))
        logger.info(
            f"주문 생성 완료: order_id={receipt.order_id}, 항목={receipt.line_count}, "
            f"소계={receipt.subtotal}, source={source}"
        )
        return receipt

    def _fulfill(self, db: Session, cart: ValidatedCart, source: str) -> OrderReceipt:
        # 1. 메뉴 항목 존재 확인
        OrderService._ensure_menu_items_exist(db, cart)

        # 2. 관련 재료 행을 한 번에 잠근 뒤 모든 항목의 재고 확인 (하나라도 부족하면 중단)
        recipes = InventoryService.resolve_recipes(db, [line.menu_item_id for line in cart.lines])
        supply = InventoryService.lock_ingredients(
            db, [entry.ingredient_id for recipe in recipes.values() for entry in recipe]
        )
        pending: dict = {}
        for line in cart.lines:
            if not InventoryService.check_availability(
                db, line.menu_item_id, line.quantity, pending,
                recipe=recipes[line.menu_item_id], supply=supply,
            ):
                logger.warning(f"재고 부족으로 주문 거부: {line.item_name} x{line.quantity}")
                raise InsufficientStockError(line.item_name)

        # 3. 포인트 사용 검증 및 가격 계산
        customer_id = cart.customer_id
        if not cart.is_anonymous:
            if cart.points_to_redeem:
                LoyaltyService.ensure_redeemable(db, customer_id, cart.points_to_redeem)
            elif LoyaltyService.lock_balance(db, customer_id) is None:
                logger.warning(f"customer_id가 customers 테이블에 존재하지 않음: {customer_id}, 비회원으로 처리")
                customer_id = settings.ANONYMOUS_ID

        subtotal = cart.subtotal
        points_earned = 0 if LoyaltyService.is_anonymous(customer_id) else LoyaltyService.calculate_points_earned(subtotal)
        discount_amount = LoyaltyService.calculate_redemption_discount(cart.points_to_redeem, subtotal)
        # 할인은 소계까지만 적용되므로 실제로 쓰인 포인트만 차감
        points_redeemed = LoyaltyService.points_for_discount(discount_amount, cart.points_to_redeem)
        total_due = max(Decimal("0.00"), subtotal - discount_amount)

        # 4. 주문번호 확보
        order_id = OrderService.allocate_order_id(db)

        # 5. 주문 헤더 + 주문 항목 일괄 기록
        OrderService.write_order_header(
            db,
            order_id=order_id,
            cart=cart,
            customer_id=customer_id,
            subtotal=subtotal,
            discount_amount=discount_amount,
            total_due=total_due,
            points_earned=points_earned,
            points_redeemed=points_redeemed,
            source=source,
        )
        OrderService.write_order_lines(db, order_id, cart, customer_id=customer_id)

        # 6. 재고 차감
        deductions = InventoryService.deduct_inventory(
            db,
            [(line.menu_item_id, line.quantity) for line in cart.lines],
            item_names={line.menu_item_id: line.item_name for line in cart.lines},
        )

        # 7. 로열티 반영
        LoyaltyService.apply_order(db, customer_id, points_earned, points_redeemed, subtotal)

        return OrderReceipt(
            order_id=order_id,
            subtotal=subtotal,
            discount_amount=discount_amount,
            total_due=total_due,
            points_earned=points_earned,
            points_redeemed=points_redeemed,
            line_count=len(cart.lines),
            deductions=deductions,
        )

    @staticmethod
    def _ensure_menu_items_exist(db: Session, cart: ValidatedCart) -> None:
        requested = {line.menu_item_id for line in cart.lines}
        query = select(menu_items.c.item_id).where(menu_items.c.item_id.in_(requested))
        found = {int(row[0]) for row in db.execute(query).fetchall()}
        missing = requested - found
        if missing:
            raise ValidationError(f"Unknown menu item id(s): {', '.join(str(i) for i in sorted(missing))}")

    @staticmethod
    def allocate_order_id(db: Session) -> int:
        """다음 주문번호 발급 - 주문 행 INSERT와 분리된 단조 증가 시퀀스"""
        if db.get_bind().dialect.supports_sequences:
            return int(db.execute(select(ORDER_ID_SEQ.next_value())).scalar_one())

        # 시퀀스 미지원 DB: 트랜잭션 안에서 카운터 행을 갱신 (쓰기 잠금으로 직렬화)
        db.execute(
            update(order_id_counter)
            .where(order_id_counter.c.name == "orders")
            .values(last_value=order_id_counter.c.last_value + 1)
        )
        query = select(order_id_counter.c.last_value).where(order_id_counter.c.name == "orders")
        return int(db.execute(query).scalar_one())

    @staticmethod
    def write_order_header(
        db: Session,
        order_id: int,
        cart: ValidatedCart,
        customer_id: int,
        subtotal: Decimal,
        discount_amount: Decimal,
        total_due: Decimal,
        points_earned: int,
        points_redeemed: int = 0,
        source: str = "pos"
    ) -> None:
        db.execute(insert(orders).values(
            order_id=order_id,
            customer_id=customer_id,
            cashier_id=cart.cashier_id,
            payment_method=cart.payment_method,
            subtotal=subtotal,
            discount_amount=discount_amount,
            total_due=total_due,
            points_earned=points_earned,
            points_redeemed=points_redeemed,
            source=source,
        ))

    @staticmethod
    def write_order_lines(
        db: Session,
        order_id: int,
        cart: ValidatedCart,
        customer_id: int | None = None
    ) -> int:
        """주문 항목 전체를 하나의 다중 행 INSERT 문으로 기록"""
        rows = [
            {
                "orderid": order_id,
                "customerid": cart.customer_id if customer_id is None else customer_id,
                "employeeatcheckout": cart.cashier_id,
                "paymentmethod": cart.payment_method,
                "menuitemid": line.menu_item_id,
                "itemname": line.item_name,
                "quantity": line.quantity,
                "unitprice": line.unit_price,
                "totalprice": line.line_total,
                "customization": line.customization,
            }
            for line in cart.lines
        ]
        db.execute(insert(order_history).values(rows))
        return len(rows)
