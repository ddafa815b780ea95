"""
POS 주문 서비스 - FastAPI 애플리케이션
캐셔/키오스크 주문 처리와 재고 차감, 로열티 적립
"""

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

# 라우터 임포트
from .routers import order, synthetic

from .services.config import settings
from .services.database import get_coordinator, get_engine, init_database
from .services.errors import OrderError
from .services.order_service import OrderService
from .services.synthetic_order_service import SyntheticOrderService

logger = logging.getLogger(__name__)


async def synthetic_order_loop(interval_seconds: int) -> None:
    """합성 주문을 주기적으로 생성 (블로킹 DB 작업은 스레드에서 실행)"""
    generator = SyntheticOrderService(OrderService(get_coordinator()))
    while True:
        try:
            await asyncio.to_thread(generator.run_once)
        except OrderError as e:
            logger.error(f"합성 주문 생성 실패: {e.message}")
        except Exception as e:
            # 설정 오류 등으로 한 번 실패해도 스케줄러는 계속 실행
            logger.exception(f"합성 주문 스케줄러 오류: {e}")
        await asyncio.sleep(interval_seconds)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """앱 생명주기 관리 - 시작 및 종료 이벤트"""
    logger.info("POS 주문 서비스 시작...")

    try:
        init_database()  # 연결 확인 + 초기화 통합
        logger.info("데이터베이스 초기화 완료")

    except SQLAlchemyError as e:
        logger.error(f"데이터베이스 초기화 실패: {e}")

    synthetic_task = None
    if settings.SYNTHETIC_ORDERS_ENABLED:
        synthetic_task = asyncio.create_task(
            synthetic_order_loop(settings.SYNTHETIC_ORDER_INTERVAL_SECONDS)
        )
        logger.info(f"합성 주문 스케줄러 시작: {settings.SYNTHETIC_ORDER_INTERVAL_SECONDS}초 간격")

    yield

    if synthetic_task:
        synthetic_task.cancel()
        try:
            await synthetic_task
        except asyncio.CancelledError:
            pass

    logger.info("POS 주문 서비스 종료...")

# FastAPI 앱 생성
app = FastAPI(
    title="POS 주문 서비스",
    description="캐셔/키오스크 주문, 재고 차감, 로열티 적립 API",
    version="1.0.0",
    docs_url="/docs",  # Swagger UI
    redoc_url="/redoc",  # ReDoc
    lifespan=lifespan
)

# CORS 설정 (프론트엔드 연결용)
app.add_middleware(
    CORSMiddleware,
    allow_origins=[origin.strip() for origin in settings.FRONTEND_URL.split(",")],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(OrderError)
async def order_error_handler(request: Request, exc: OrderError) -> JSONResponse:
    """주문 오류를 공통 응답 형식으로 변환 (내부 오류 내용은 노출하지 않음)"""
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "message": exc.public_message, "code": exc.code},
    )


# 라우터 등록
app.include_router(order.router, prefix="/api/orders")
app.include_router(order.router, prefix="/api/order-history")  # 키오스크 호환 경로
app.include_router(synthetic.router, prefix="/api/synthetic-orders")


# 헬스체크 엔드포인트 (무인증)
@app.get("/healthz")
def healthz():
    try:
        with get_engine().connect() as connection:
            connection.execute(text("SELECT 1"))
        return {"status": "ok", "database": "connected"}
    except SQLAlchemyError as e:
        return JSONResponse(
            status_code=500,
            content={"status": "error", "database": "disconnected", "error": str(e)},
        )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=settings.BACKEND_HOST, port=settings.BACKEND_PORT)
