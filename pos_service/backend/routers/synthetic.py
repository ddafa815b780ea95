"""
합성 주문 API 라우터
데모 트래픽 생성 (수동 실행)
"""

from typing import Annotated, Any

from fastapi import APIRouter, Depends

from ..services.synthetic_order_service import SyntheticOrderService
from .order import OrderService, get_order_service

router = APIRouter(tags=["synthetic-orders"])


def get_synthetic_order_service(
    order_service: Annotated[OrderService, Depends(get_order_service)]
) -> SyntheticOrderService:
    return SyntheticOrderService(order_service)


@router.post("/run")
def run_synthetic_orders(
    generator: Annotated[SyntheticOrderService, Depends(get_synthetic_order_service)]
) -> dict[str, Any]:
    """합성 주문 1회 생성"""
    order_ids = generator.run_once()
    return {"success": True, "data": {"order_ids": order_ids}}
