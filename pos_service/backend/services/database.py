"""
데이터베이스 연결 서비스 - SQLAlchemy 엔진, 세션, 트랜잭션 코디네이터
"""

import logging
from functools import lru_cache
from typing import Any, Callable, TypeVar

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from .config import settings
from .errors import OrderError, TransactionError
from .schema import metadata

logger = logging.getLogger(__name__)

T = TypeVar("T")


def create_db_engine(database_url: str, **engine_options: Any) -> Engine:
    """DB URL로 엔진 생성

    SQLite는 행 잠금이 없으므로 트랜잭션을 BEGIN IMMEDIATE로 시작해
    동시 주문이 쓰기 잠금에서 직렬화되도록 한다.
    """
    if database_url.startswith("sqlite"):
        engine = create_engine(database_url, **engine_options)

        @event.listens_for(engine, "connect")
        def _disable_pysqlite_begin(dbapi_connection, connection_record):
            dbapi_connection.isolation_level = None

        @event.listens_for(engine, "begin")
        def _begin_immediate(conn):
            conn.exec_driver_sql("BEGIN IMMEDIATE")

        return engine

    engine_options.setdefault("pool_size", settings.DB_POOL_SIZE)
    engine_options.setdefault("max_overflow", settings.DB_MAX_OVERFLOW)
    engine_options.setdefault("pool_timeout", settings.DB_POOL_TIMEOUT)
    return create_engine(
        database_url,
        echo=settings.DB_ECHO,  # SQL 로그는 필요시에만
        pool_pre_ping=True,
        pool_recycle=3600,
        **engine_options,
    )


@lru_cache
def get_engine() -> Engine:
    return create_db_engine(settings.DATABASE_URL)


@lru_cache
def get_session_factory() -> sessionmaker:
    return sessionmaker(autoflush=False, bind=get_engine())


class TransactionCoordinator:
    """하나의 작업 단위를 단일 트랜잭션으로 실행

    begin/commit/rollback은 이 클래스에서만 호출한다. 작업 함수는
    세션 핸들만 받으며 수명 주기를 직접 관리하지 않는다.
    """

    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    def run(self, work: Callable[[Session], T]) -> T:
        db = self._session_factory()
        try:
            db.begin()
            result = work(db)
            db.commit()
            return result
        except OrderError:
            self._rollback(db)
            raise
        except Exception as e:
            self._rollback(db)
            logger.exception(f"트랜잭션 실패, 롤백 완료: {e}")
            raise TransactionError(str(e)) from e
        finally:
            db.close()

    @staticmethod
    def _rollback(db: Session) -> None:
        try:
            db.rollback()
        except SQLAlchemyError as rollback_error:
            # 커넥션이 끊긴 경우 close()에서 정리됨
            logger.error(f"롤백 실패: {rollback_error}")


def get_coordinator() -> TransactionCoordinator:
    """트랜잭션 코디네이터 (FastAPI 의존성)"""
    return TransactionCoordinator(get_session_factory())


def init_database(engine: Engine | None = None) -> bool:
    """데이터베이스 연결 확인 및 테이블 초기화"""
    engine = engine or get_engine()
    try:
        with engine.connect() as connection:
            connection.execute(text("SELECT 1"))
        metadata.create_all(engine, checkfirst=True)
        logger.info("데이터베이스 연결 및 스키마 확인 완료")
        return True

    except SQLAlchemyError as e:
        logger.error(f"데이터베이스 연결 실패: {e}")
        raise
