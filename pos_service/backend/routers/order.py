"""
주문 API 라우터
캐셔/키오스크 주문 접수
"""

import logging
from typing import Annotated, Any

from fastapi import APIRouter, Body, Depends, status

from ..services.database import TransactionCoordinator, get_coordinator
from ..services.order_service import OrderService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["orders"])


def get_order_service(
    coordinator: Annotated[TransactionCoordinator, Depends(get_coordinator)]
) -> OrderService:
    return OrderService(coordinator)


@router.post("/", status_code=status.HTTP_201_CREATED)
def create_order_endpoint(
    payload: Annotated[Any, Body()],
    order_service: Annotated[OrderService, Depends(get_order_service)]
) -> dict[str, Any]:
    """주문 생성

    요청 본문은 검증하지 않은 그대로 주문 서비스에 전달한다.
    실패(OrderError)는 app의 예외 핸들러가 {success, message, code}로 변환.
    """
    receipt = order_service.fulfill_order(payload)
    return {
        "success": True,
        "data": receipt.to_dict(),
        "message": "Order placed successfully",
    }
