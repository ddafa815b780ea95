"""
주문 처리 오류 정의
Typed failures returned by the order fulfillment engine
"""


class OrderError(Exception):
    """주문 처리 실패의 기본 클래스 (HTTP 상태 코드와 오류 코드 포함)"""

    status_code = 400
    code = "ORDER_ERROR"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    @property
    def public_message(self) -> str:
        return self.message


class ValidationError(OrderError):
    """장바구니 형식 오류 - 어떤 변경도 시도하지 않음"""

    code = "INVALID_CART"


class InsufficientStockError(OrderError):
    """재고 부족 - 처음으로 충족할 수 없는 메뉴 항목 이름을 포함"""

    code = "INSUFFICIENT_STOCK"

    def __init__(self, item_name: str):
        super().__init__(f"Not enough stock to make {item_name}")
        self.item_name = item_name


class InsufficientPointsError(OrderError):
    """사용 요청 포인트가 고객 잔액을 초과"""

    code = "INSUFFICIENT_POINTS"

    def __init__(self, customer_id: int, requested: int, available: int):
        super().__init__(
            f"Customer {customer_id} has {available} points, cannot redeem {requested}"
        )
        self.customer_id = customer_id
        self.requested = requested
        self.available = available


class TransactionError(OrderError):
    """저장소/인프라 오류 - 항상 전체 롤백을 의미"""

    status_code = 500
    code = "ORDER_FAILED"

    def __init__(self, message: str = "Order could not be completed"):
        super().__init__(message)

    @property
    def public_message(self) -> str:
        # 내부 오류 내용은 로그에만 남김
        return "Order could not be completed"
