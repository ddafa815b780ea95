"""
데이터베이스 테이블 정의 (SQLAlchemy Core)
PostgreSQL 운영 DB와 SQLite 테스트 DB에서 같은 쿼리를 사용하기 위한 공용 스키마
"""

from sqlalchemy import (
    DDL,
    JSON,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    MetaData,
    Numeric,
    Sequence,
    String,
    Table,
    event,
    func,
)

metadata = MetaData()

# 주문번호 시퀀스 - 주문 행 INSERT 이전에 번호를 확보하기 위해 테이블과 분리
ORDER_ID_SEQ = Sequence("order_id_seq", start=1, metadata=metadata)

menu_items = Table(
    "menuitems",
    metadata,
    Column("item_id", Integer, primary_key=True),
    Column("item_name", String(120), nullable=False),
    Column("cost", Numeric(10, 2), nullable=False, default=0),
    Column("category", String(60)),
)

inventory = Table(
    "inventory",
    metadata,
    Column("item_id", Integer, primary_key=True),
    Column("item_name", String(120), nullable=False),
    # 현재 설계에서는 음수가 되지 않도록 차감 시 조건부 UPDATE 사용
    Column("supply", Numeric(12, 3), nullable=False, default=0),
    Column("unit", String(32)),
    Column("cost", Numeric(10, 2), nullable=False, default=0),
)

drink_recipes = Table(
    "drinkjointable",
    metadata,
    Column("drink_id", Integer, ForeignKey("menuitems.item_id", ondelete="CASCADE"), primary_key=True),
    Column("inventory_id", Integer, ForeignKey("inventory.item_id"), primary_key=True),
    Column("quantity", Numeric(10, 3), nullable=False),
)

customers = Table(
    "customers",
    metadata,
    Column("customers_id", Integer, primary_key=True),
    Column("customer_name", String(120)),
    Column("phone_number", String(32), unique=True),
    Column("points", Integer, nullable=False, default=0),
    Column("total_spent", Numeric(12, 2), nullable=False, default=0),
)

employees = Table(
    "employees",
    metadata,
    Column("employee_id", Integer, primary_key=True),
    Column("employee_name", String(120)),
)

orders = Table(
    "orders",
    metadata,
    Column("order_id", Integer, primary_key=True, autoincrement=False),
    Column("customer_id", Integer, nullable=False, default=0),
    Column("cashier_id", Integer, nullable=False, default=0),
    Column("payment_method", String(16), nullable=False),
    Column("subtotal", Numeric(12, 2), nullable=False),
    Column("discount_amount", Numeric(12, 2), nullable=False, default=0),
    Column("total_due", Numeric(12, 2), nullable=False),
    Column("points_earned", Integer, nullable=False, default=0),
    Column("points_redeemed", Integer, nullable=False, default=0),
    Column("source", String(16), nullable=False, default="pos"),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
)

# 주문 항목 원장 (주문 시점의 이름/가격 스냅샷)
order_history = Table(
    "order_history",
    metadata,
    Column("line_id", Integer, primary_key=True, autoincrement=True),
    Column("orderid", Integer, ForeignKey("orders.order_id"), nullable=False, index=True),
    Column("customerid", Integer, nullable=False, default=0),
    Column("employeeatcheckout", Integer, nullable=False, default=0),
    Column("paymentmethod", String(16), nullable=False),
    Column("menuitemid", Integer, nullable=False),
    Column("itemname", String(120), nullable=False),
    Column("quantity", Integer, nullable=False),
    Column("unitprice", Numeric(10, 2), nullable=False),
    Column("totalprice", Numeric(12, 2), nullable=False),
    Column("customization", JSON(none_as_null=True)),
    Column("orderdate", DateTime, nullable=False, server_default=func.now()),
)

# 시퀀스를 지원하지 않는 DB(SQLite)용 주문번호 카운터
order_id_counter = Table(
    "order_id_counter",
    metadata,
    Column("name", String(32), primary_key=True),
    Column("last_value", Integer, nullable=False),
)

event.listen(
    order_id_counter,
    "after_create",
    DDL("INSERT INTO order_id_counter (name, last_value) VALUES ('orders', 0)"),
)
