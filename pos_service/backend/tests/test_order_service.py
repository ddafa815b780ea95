from decimal import Decimal

import pytest
from sqlalchemy import select

from backend.services.errors import (
    InsufficientPointsError,
    InsufficientStockError,
    TransactionError,
    ValidationError,
)
from backend.services.order_service import OrderService
from backend.services.schema import customers, order_history, orders
from backend.tests.conftest import (
    MEMBER_ID,
    MILK,
    PEACH_TEA,
    SERVICE_FEE,
    TAPIOCA,
    TARO_MILK_TEA,
    customer_row,
    order_counts,
    set_supply,
    supply_of,
    taro_cart,
)


# ----------------------------------------------------------------------
# 장바구니 검증
# ----------------------------------------------------------------------

def test_validate_cart_applies_defaults_and_floors_quantity():
    cart = OrderService.validate_cart({
        "items": [{"menu_item_id": "10", "item_name": "Taro Milk Tea", "unit_price": "4.5", "quantity": 2.9}]
    })

    line = cart.lines[0]
    assert line.menu_item_id == 10
    assert line.quantity == 2
    assert line.unit_price == Decimal("4.50")
    assert line.line_total == Decimal("9.00")
    assert cart.payment_method == "card"
    assert cart.customer_id == 0
    assert cart.cashier_id == 0
    assert cart.is_anonymous is True


def test_validate_cart_accepts_kiosk_field_names():
    cart = OrderService.validate_cart({
        "items": [{"item_id": 10, "item_name": "Taro Milk Tea", "cost": 4.5, "quantity": 1}],
        "paymentmethod": "Cash",
        "customerId": MEMBER_ID,
        "pointsRedeemed": 20,
    })

    assert cart.lines[0].menu_item_id == 10
    assert cart.payment_method == "cash"
    assert cart.customer_id == MEMBER_ID
    assert cart.points_to_redeem == 20


@pytest.mark.parametrize(
    "payload",
    [
        None,
        [],
        {"items": []},
        {"items": "not-a-list"},
        {"items": ["not-an-object"]},
        {"items": [{"item_name": "No Id", "unit_price": 1, "quantity": 1}]},
        {"items": [{"menu_item_id": "abc", "unit_price": 1, "quantity": 1}]},
        {"items": [{"menu_item_id": 0, "unit_price": 1, "quantity": 1}]},
        {"items": [{"menu_item_id": 1, "unit_price": 1, "quantity": 0.5}]},
        {"items": [{"menu_item_id": 1, "unit_price": 1, "quantity": -1}]},
        {"items": [{"menu_item_id": 1, "unit_price": 1}]},
        {"items": [{"menu_item_id": 1, "unit_price": -1, "quantity": 1}]},
        {"items": [{"menu_item_id": 1, "unit_price": 1, "quantity": 1, "customization": "sweet"}]},
        {"items": [{"menu_item_id": 1, "unit_price": 1, "quantity": 1}], "payment_method": "barter"},
        {"items": [{"menu_item_id": 1, "unit_price": 1, "quantity": 1}], "points_to_redeem": 10},
        {"items": [{"menu_item_id": 1, "unit_price": 1, "quantity": 1}], "customer_id": -3},
        {"items": [{"menu_item_id": "1e6", "unit_price": 1, "quantity": 1}]},
        {"items": [{"menu_item_id": True, "unit_price": 1, "quantity": 1}]},
        {"items": [{"menu_item_id": 2**31, "unit_price": 1, "quantity": 1}]},
        {"items": [{"menu_item_id": 1, "unit_price": 1, "quantity": 10**6}]},
        {"items": [{"menu_item_id": 1, "unit_price": "1e12", "quantity": 1}]},
        {"items": [{"menu_item_id": 1, "unit_price": 1, "quantity": 1}], "customer_id": 2**63},
        {"items": [{"menu_item_id": 1, "unit_price": 1, "quantity": 1}], "cashier_id": "3.5"},
        {"items": [{"menu_item_id": 1, "unit_price": 1, "quantity": 1}] * 101},
    ],
)
def test_validate_cart_rejects_malformed_payloads(payload):
    with pytest.raises(ValidationError):
        OrderService.validate_cart(payload)


def test_validate_cart_fills_item_name_and_drops_empty_customization():
    cart = OrderService.validate_cart({
        "cart": [{"item_id": "12", "name": "  ", "price": "1", "qty": "3", "customization": {}}],
        "employeeId": "3",
        "payment_method": None,
    })

    line = cart.lines[0]
    assert line.item_name == "Item #12"
    assert line.quantity == 3
    assert line.customization is None
    assert cart.cashier_id == 3
    assert cart.payment_method == "card"


def test_validation_error_message_names_the_problem():
    with pytest.raises(ValidationError) as exc_info:
        OrderService.validate_cart({"items": []})
    assert exc_info.value.message == "Cart is empty"

    with pytest.raises(ValidationError) as exc_info:
        OrderService.validate_cart({"items": [{"menu_item_id": 1, "unit_price": 1, "quantity": 1}], "payment_method": "barter"})
    assert exc_info.value.message == "Unsupported payment method: barter"


def test_validation_failure_never_opens_a_transaction():
    class _ExplodingCoordinator:
        def run(self, work):  # pragma: no cover - 호출되면 실패
            raise AssertionError("transaction must not start for an invalid cart")

    service = OrderService(_ExplodingCoordinator())  # type: ignore[arg-type]

    with pytest.raises(ValidationError):
        service.fulfill_order({"items": []})


# ----------------------------------------------------------------------
# 주문 처리
# ----------------------------------------------------------------------

def test_taro_milk_tea_order_deducts_recipe_inventory(seeded, order_service):
    receipt = order_service.fulfill_order(taro_cart(quantity=2))

    assert receipt.order_id == 1
    assert receipt.subtotal == Decimal("9.00")
    assert receipt.line_count == 1
    assert supply_of(seeded, TAPIOCA) == Decimal("6")
    assert supply_of(seeded, MILK) == Decimal("3")
    assert {(d.ingredient_id, d.amount) for d in receipt.deductions} == {
        (TAPIOCA, Decimal("4")),
        (MILK, Decimal("2")),
    }


def test_successful_order_writes_one_header_and_one_row_per_line(seeded, order_service):
    cart = {
        "items": [
            {"menu_item_id": TARO_MILK_TEA, "item_name": "Taro Milk Tea", "unit_price": 4.50, "quantity": 1,
             "customization": {"sweetness": 50, "ice": "light", "size": "large"}},
            {"menu_item_id": PEACH_TEA, "item_name": "Peach Tea", "unit_price": 3.75, "quantity": 2},
            {"menu_item_id": SERVICE_FEE, "item_name": "Service Fee", "unit_price": 1.00, "quantity": 1},
        ],
        "cashier_id": 3,
        "payment_method": "mobile",
    }

    receipt = order_service.fulfill_order(cart)

    assert order_counts(seeded) == (1, 3)
    with seeded.begin() as conn:
        lines = conn.execute(
            select(order_history).where(order_history.c.orderid == receipt.order_id).order_by(order_history.c.line_id)
        ).fetchall()
        header = conn.execute(select(orders).where(orders.c.order_id == receipt.order_id)).fetchone()

    assert sum(Decimal(str(line.totalprice)) for line in lines) == receipt.subtotal == Decimal("13.00")
    assert [line.itemname for line in lines] == ["Taro Milk Tea", "Peach Tea", "Service Fee"]
    assert lines[0].customization == {"sweetness": 50, "ice": "light", "size": "large"}
    assert lines[1].customization is None
    assert all(line.employeeatcheckout == 3 and line.paymentmethod == "mobile" for line in lines)
    assert header.payment_method == "mobile"
    assert Decimal(str(header.subtotal)) == Decimal("13.00")
    # Taro 2 + Peach 2 (서비스 요금은 재고 비추적)
    assert supply_of(seeded, TAPIOCA) == Decimal("6")


def test_order_ids_increase_monotonically(seeded, order_service):
    first = order_service.fulfill_order(taro_cart(quantity=1))
    second = order_service.fulfill_order(taro_cart(quantity=1))

    assert second.order_id > first.order_id


def test_insufficient_stock_names_item_and_rolls_back(seeded, order_service):
    set_supply(seeded, TAPIOCA, 1)

    with pytest.raises(InsufficientStockError) as exc_info:
        order_service.fulfill_order(taro_cart(quantity=2))

    assert exc_info.value.item_name == "Taro Milk Tea"
    assert supply_of(seeded, TAPIOCA) == Decimal("1")
    assert supply_of(seeded, MILK) == Decimal("5")
    assert order_counts(seeded) == (0, 0)


def test_repeated_insufficient_stock_leaves_inventory_unchanged(seeded, order_service):
    set_supply(seeded, MILK, 1)

    for _ in range(2):
        with pytest.raises(InsufficientStockError):
            order_service.fulfill_order(taro_cart(quantity=2))
        assert supply_of(seeded, TAPIOCA) == Decimal("10")
        assert supply_of(seeded, MILK) == Decimal("1")

    assert order_counts(seeded) == (0, 0)


def test_stock_check_counts_demand_across_lines(seeded, order_service):
    # 각 항목은 단독으로 가능하지만 합치면 Tapioca 12 필요 (재고 10)
    cart = {
        "items": [
            {"menu_item_id": TARO_MILK_TEA, "item_name": "Taro Milk Tea", "unit_price": 4.50, "quantity": 4},
            {"menu_item_id": PEACH_TEA, "item_name": "Peach Tea", "unit_price": 3.75, "quantity": 4},
        ]
    }

    with pytest.raises(InsufficientStockError) as exc_info:
        order_service.fulfill_order(cart)

    assert exc_info.value.item_name == "Peach Tea"
    assert supply_of(seeded, TAPIOCA) == Decimal("10")
    assert order_counts(seeded) == (0, 0)


def test_unknown_menu_item_is_rejected_without_writes(seeded, order_service):
    with pytest.raises(ValidationError):
        order_service.fulfill_order({"items": [{"menu_item_id": 999, "unit_price": 1, "quantity": 1}]})

    assert order_counts(seeded) == (0, 0)


def test_storage_failure_is_reported_as_transaction_error(seeded, order_service, monkeypatch):
    def broken_lines(*args, **kwargs):
        raise RuntimeError("disk full")

    monkeypatch.setattr(OrderService, "write_order_lines", staticmethod(broken_lines))

    with pytest.raises(TransactionError) as exc_info:
        order_service.fulfill_order(taro_cart(quantity=1))

    assert exc_info.value.public_message == "Order could not be completed"
    assert isinstance(exc_info.value.__cause__, RuntimeError)
    # 헤더는 기록됐지만 롤백되어야 함
    assert order_counts(seeded) == (0, 0)
    assert supply_of(seeded, TAPIOCA) == Decimal("10")


# ----------------------------------------------------------------------
# 로열티
# ----------------------------------------------------------------------

def test_member_order_earns_floor_of_subtotal_times_rate(seeded, order_service):
    receipt = order_service.fulfill_order({
        "items": [{"menu_item_id": PEACH_TEA, "item_name": "Peach Tea", "unit_price": "3.75", "quantity": 1}],
        "customer_id": MEMBER_ID,
    })

    points, total_spent = customer_row(seeded)
    assert receipt.points_earned == 37
    assert points == 100 + 37
    assert Decimal(str(total_spent)) == Decimal("23.75")


def test_anonymous_order_leaves_loyalty_untouched(seeded, order_service):
    receipt = order_service.fulfill_order(taro_cart(quantity=1, customer_id=0))

    points, total_spent = customer_row(seeded)
    assert receipt.points_earned == 0
    assert points == 100
    assert Decimal(str(total_spent)) == Decimal("20.00")


def test_unknown_customer_is_treated_as_anonymous(seeded, order_service):
    receipt = order_service.fulfill_order(taro_cart(quantity=1, customer_id=555))

    assert receipt.points_earned == 0
    with seeded.begin() as conn:
        header = conn.execute(select(orders).where(orders.c.order_id == receipt.order_id)).fetchone()
    assert header.customer_id == 0


def test_redemption_applies_discount_and_updates_balance_once(seeded, order_service):
    receipt = order_service.fulfill_order(taro_cart(quantity=2, customer_id=MEMBER_ID, points_to_redeem=50))

    points, total_spent = customer_row(seeded)
    assert receipt.points_earned == 90
    assert receipt.discount_amount == Decimal("0.50")
    assert receipt.total_due == Decimal("8.50")
    assert points == 100 + 90 - 50
    assert Decimal(str(total_spent)) == Decimal("29.00")


def test_redemption_over_balance_is_rejected_and_rolled_back(seeded, order_service):
    with pytest.raises(InsufficientPointsError) as exc_info:
        order_service.fulfill_order(taro_cart(quantity=1, customer_id=MEMBER_ID, points_to_redeem=101))

    assert exc_info.value.available == 100
    points, _ = customer_row(seeded)
    assert points == 100
    assert supply_of(seeded, TAPIOCA) == Decimal("10")
    assert order_counts(seeded) == (0, 0)


def test_redemption_beyond_subtotal_only_spends_points_used(seeded, order_service):
    with seeded.begin() as conn:
        conn.execute(customers.update().where(customers.c.customers_id == MEMBER_ID).values(points=5000))

    receipt = order_service.fulfill_order(taro_cart(quantity=2, customer_id=MEMBER_ID, points_to_redeem=5000))

    # 소계 9.00 -> 900 포인트만 사용, 나머지는 잔액에 남음
    assert receipt.discount_amount == Decimal("9.00")
    assert receipt.total_due == Decimal("0.00")
    assert receipt.points_redeemed == 900
    points, _ = customer_row(seeded)
    assert points == 5000 + 90 - 900
    with seeded.begin() as conn:
        header = conn.execute(select(orders).where(orders.c.order_id == receipt.order_id)).fetchone()
    assert header.points_redeemed == 900
