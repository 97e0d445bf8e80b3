from sqlalchemy import Table, Column, String, Integer, Enum, DateTime, JSON, MetaData
from sqlalchemy.sql import func

from storefront.domain.models import PaymentStatus, PaymentMethod

metadata = MetaData()


orders_tbl = Table(
    "orders",
    metadata,
    Column("id", String, primary_key=True),
    Column("user_id", String, nullable=False, index=True),
    Column("items", JSON, nullable=False),
    Column("total_amount", Integer, nullable=False),
    Column("shipping_address", JSON, nullable=False),
    Column("payment_method", Enum(PaymentMethod), nullable=False),
    Column("payment_status", Enum(PaymentStatus), nullable=False, default=PaymentStatus.PENDING),
    Column("payment_info", JSON, nullable=True),
    Column("version", Integer, nullable=False, default=0),
    Column("created_at", DateTime(timezone=True), server_default=func.now()),
    Column("updated_at", DateTime(timezone=True), server_default=func.now())
)


carts_tbl = Table(
    "carts",
    metadata,
    Column("user_id", String, primary_key=True),
    Column("items", JSON, nullable=False),
    Column("version", Integer, nullable=False, default=0),
    Column("updated_at", DateTime(timezone=True), server_default=func.now())
)
