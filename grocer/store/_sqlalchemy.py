"""
SQLAlchemy stores — async persistence for every store protocol.

Usage:
    session_factory, engine = await create_database("sqlite+aiosqlite:///grocer.db")
    stores = sqlalchemy_stores(session_factory)

Conditional writes are single UPDATE ... WHERE statements; rowcount tells
whether the guard held. Every public method is wrapped with
combinators.lift.catching_async so driver exceptions surface as StoreError.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable, Sequence
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, cast

from combinators import lift as L
from kungfu import LazyCoroResult, Result
from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    delete,
    or_,
    select,
    update,
)
from sqlalchemy.engine import CursorResult
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.pool import StaticPool

from grocer.domain import (
    Product,
    ProductId,
    Promotion,
    PromotionId,
    PromotionUsage,
    UsageType,
    usage_permits,
    Cart,
    UserId,
    Order,
    OrderId,
    OrderStatus,
    Payment,
    PaymentMethod,
    PaymentStatus,
)
from grocer.store._codec import (
    as_utc,
    dump_rule,
    load_rule,
    dump_discount,
    load_discount,
    dump_cart_line,
    load_cart_line,
    dump_order_line,
    load_order_line,
    dump_applied_promotion,
    load_applied_promotion,
    dump_address,
    load_address,
)
from grocer.store._protocols import StoreError, Attempt, AttemptState, Stores

type SessionFactory = Callable[[], AbstractAsyncContextManager[AsyncSession]]

# ═══════════════════════════════════════════════════════════════════════════════
# Models
# ═══════════════════════════════════════════════════════════════════════════════

MONEY = Numeric(12, 2, asdecimal=True)
TIMESTAMP = DateTime(timezone=True)


class Base(DeclarativeBase):
    pass


class ProductTable(Base):
    __tablename__ = "products"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    base_price: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    stock: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_available: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_promotion_eligible: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True
    )
    discount: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    category: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    unit: Mapped[str] = mapped_column(String(50), nullable=False, default="")


class PromotionTable(Base):
    __tablename__ = "promotions"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    code: Mapped[str] = mapped_column(String(64), nullable=False, unique=True, index=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    rule: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    min_order_value: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    max_discount_amount: Mapped[Decimal | None] = mapped_column(MONEY, nullable=True)
    valid_from: Mapped[datetime | None] = mapped_column(TIMESTAMP, nullable=True)
    valid_to: Mapped[datetime | None] = mapped_column(TIMESTAMP, nullable=True)
    usage_type: Mapped[str] = mapped_column(String(20), nullable=False)
    max_total_uses: Mapped[int | None] = mapped_column(Integer, nullable=True)
    max_uses_per_user: Mapped[int | None] = mapped_column(Integer, nullable=True)
    used_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class PromotionUsageTable(Base):
    __tablename__ = "promotion_usage"

    promotion_id: Mapped[str] = mapped_column(
        ForeignKey("promotions.id"), primary_key=True
    )
    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    count: Mapped[int] = mapped_column(Integer, nullable=False)
    last_used_at: Mapped[datetime | None] = mapped_column(TIMESTAMP, nullable=True)


class CartTable(Base):
    __tablename__ = "carts"

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    lines: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False)
    subtotal: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    total: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    discounts: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    last_reconciled_at: Mapped[datetime | None] = mapped_column(TIMESTAMP, nullable=True)


class OrderTable(Base):
    __tablename__ = "orders"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    lines: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False)
    applied_promotions: Mapped[list[dict[str, Any]]] = mapped_column(
        JSON, nullable=False
    )
    delivery_address: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    subtotal: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    product_discounts: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    delivery_fee: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    total: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    payment_method: Mapped[str] = mapped_column(String(20), nullable=False)
    payment_status: Mapped[str] = mapped_column(String(20), nullable=False)
    transaction_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    placed_at: Mapped[datetime] = mapped_column(TIMESTAMP, nullable=False, index=True)
    updated_at: Mapped[datetime] = mapped_column(TIMESTAMP, nullable=False)
    cancellation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)


class CheckoutAttemptTable(Base):
    __tablename__ = "checkout_attempts"

    key: Mapped[str] = mapped_column(String(255), primary_key=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    order_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    error_code: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(TIMESTAMP, nullable=False)
    expires_at: Mapped[datetime | None] = mapped_column(TIMESTAMP, nullable=True)


# ═══════════════════════════════════════════════════════════════════════════════
# Helpers
# ═══════════════════════════════════════════════════════════════════════════════


def _guarded[T](label: str, impl: Callable[[], Awaitable[T]]) -> LazyCoroResult[T, StoreError]:
    return L.catching_async(impl, on_error=lambda e: StoreError(f"{label}: {e}", e))


def _rowcount(result: Any) -> int:
    return cast(CursorResult[Any], result).rowcount


def _money_or_none(value: Decimal | None) -> Decimal | None:
    return Decimal(value) if value is not None else None


# ═══════════════════════════════════════════════════════════════════════════════
# Products
# ═══════════════════════════════════════════════════════════════════════════════


def _product_from_row(row: ProductTable) -> Product:
    return Product(
        id=row.id,
        name=row.name,
        base_price=Decimal(row.base_price),
        stock=row.stock,
        is_available=row.is_available,
        is_promotion_eligible=row.is_promotion_eligible,
        discount=load_discount(row.discount),
        category=row.category,
        unit=row.unit,
    )


def _product_values(product: Product) -> dict[str, Any]:
    return {
        "name": product.name,
        "base_price": product.base_price,
        "stock": product.stock,
        "is_available": product.is_available,
        "is_promotion_eligible": product.is_promotion_eligible,
        "discount": dump_discount(product.discount),
        "category": product.category,
        "unit": product.unit,
    }


class SQLAlchemyProductStore:
    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    async def get(self, product_id: ProductId) -> Result[Product | None, StoreError]:
        async def impl() -> Product | None:
            async with self._session_factory() as session:
                row = await session.get(ProductTable, product_id)
                return _product_from_row(row) if row is not None else None

        return await _guarded("get product", impl)

    async def get_many(
        self, product_ids: Sequence[ProductId]
    ) -> Result[dict[ProductId, Product], StoreError]:
        async def impl() -> dict[ProductId, Product]:
            if not product_ids:
                return {}
            async with self._session_factory() as session:
                rows = await session.scalars(
                    select(ProductTable).where(ProductTable.id.in_(list(product_ids)))
                )
                return {row.id: _product_from_row(row) for row in rows}

        return await _guarded("get products", impl)

    async def save(self, product: Product) -> Result[None, StoreError]:
        async def impl() -> None:
            async with self._session_factory() as session:
                row = await session.get(ProductTable, product.id)
                if row is None:
                    session.add(ProductTable(id=product.id, **_product_values(product)))
                else:
                    for name, value in _product_values(product).items():
                        setattr(row, name, value)
                await session.commit()

        return await _guarded("save product", impl)

    async def delete(self, product_id: ProductId) -> Result[bool, StoreError]:
        async def impl() -> bool:
            async with self._session_factory() as session:
                result = await session.execute(
                    delete(ProductTable).where(ProductTable.id == product_id)
                )
                await session.commit()
                return _rowcount(result) > 0

        return await _guarded("delete product", impl)

    async def decrement_stock(
        self, product_id: ProductId, quantity: int
    ) -> Result[bool, StoreError]:
        async def impl() -> bool:
            async with self._session_factory() as session:
                result = await session.execute(
                    update(ProductTable)
                    .where(ProductTable.id == product_id, ProductTable.stock >= quantity)
                    .values(stock=ProductTable.stock - quantity)
                )
                await session.commit()
                return _rowcount(result) == 1

        return await _guarded("decrement stock", impl)

    async def restock(
        self, product_id: ProductId, quantity: int
    ) -> Result[None, StoreError]:
        async def impl() -> None:
            async with self._session_factory() as session:
                await session.execute(
                    update(ProductTable)
                    .where(ProductTable.id == product_id)
                    .values(stock=ProductTable.stock + quantity)
                )
                await session.commit()

        return await _guarded("restock", impl)


# ═══════════════════════════════════════════════════════════════════════════════
# Promotions
# ═══════════════════════════════════════════════════════════════════════════════


def _promotion_values(promotion: Promotion) -> dict[str, Any]:
    """Definition columns. Counters are owned by record_usage/revert_usage."""
    return {
        "code": promotion.code,
        "name": promotion.name,
        "description": promotion.description,
        "rule": dump_rule(promotion.rule),
        "min_order_value": promotion.min_order_value,
        "max_discount_amount": promotion.max_discount_amount,
        "valid_from": promotion.valid_from,
        "valid_to": promotion.valid_to,
        "usage_type": str(promotion.usage_type),
        "max_total_uses": promotion.max_total_uses,
        "max_uses_per_user": promotion.max_uses_per_user,
        "is_active": promotion.is_active,
    }


def _promotion_from_rows(
    row: PromotionTable, usage: Sequence[PromotionUsageTable]
) -> Promotion:
    return Promotion(
        id=row.id,
        code=row.code,
        name=row.name,
        description=row.description,
        rule=load_rule(row.rule),
        min_order_value=Decimal(row.min_order_value),
        max_discount_amount=_money_or_none(row.max_discount_amount),
        valid_from=as_utc(row.valid_from),
        valid_to=as_utc(row.valid_to),
        usage_type=UsageType(row.usage_type),
        max_total_uses=row.max_total_uses,
        max_uses_per_user=row.max_uses_per_user,
        used_count=row.used_count,
        usage={
            u.user_id: PromotionUsage(u.count, as_utc(u.last_used_at)) for u in usage
        },
        is_active=row.is_active,
    )


class SQLAlchemyPromotionStore:
    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    async def _load(
        self, session: AsyncSession, row: PromotionTable | None
    ) -> Promotion | None:
        if row is None:
            return None
        usage = await session.scalars(
            select(PromotionUsageTable).where(PromotionUsageTable.promotion_id == row.id)
        )
        return _promotion_from_rows(row, list(usage))

    async def get(
        self, promotion_id: PromotionId
    ) -> Result[Promotion | None, StoreError]:
        async def impl() -> Promotion | None:
            async with self._session_factory() as session:
                return await self._load(
                    session, await session.get(PromotionTable, promotion_id)
                )

        return await _guarded("get promotion", impl)

    async def get_by_code(self, code: str) -> Result[Promotion | None, StoreError]:
        async def impl() -> Promotion | None:
            async with self._session_factory() as session:
                row = await session.scalar(
                    select(PromotionTable).where(PromotionTable.code == code)
                )
                return await self._load(session, row)

        return await _guarded("get promotion by code", impl)

    async def list_all(self) -> Result[list[Promotion], StoreError]:
        async def impl() -> list[Promotion]:
            async with self._session_factory() as session:
                rows = list(await session.scalars(select(PromotionTable)))
                usage = list(await session.scalars(select(PromotionUsageTable)))
                return [
                    _promotion_from_rows(
                        row, [u for u in usage if u.promotion_id == row.id]
                    )
                    for row in rows
                ]

        return await _guarded("list promotions", impl)

    async def insert(self, promotion: Promotion) -> Result[bool, StoreError]:
        async def impl() -> bool:
            async with self._session_factory() as session:
                session.add(
                    PromotionTable(
                        id=promotion.id,
                        used_count=promotion.used_count,
                        **_promotion_values(promotion),
                    )
                )
                for user_id, usage in promotion.usage.items():
                    session.add(
                        PromotionUsageTable(
                            promotion_id=promotion.id,
                            user_id=user_id,
                            count=usage.count,
                            last_used_at=usage.last_used_at,
                        )
                    )
                try:
                    await session.commit()
                except IntegrityError:
                    await session.rollback()
                    return False
                return True

        return await _guarded("insert promotion", impl)

    async def update(self, promotion: Promotion) -> Result[bool, StoreError]:
        async def impl() -> bool:
            async with self._session_factory() as session:
                try:
                    result = await session.execute(
                        update(PromotionTable)
                        .where(PromotionTable.id == promotion.id)
                        .values(**_promotion_values(promotion))
                    )
                    await session.commit()
                except IntegrityError:
                    await session.rollback()
                    return False
                return _rowcount(result) == 1

        return await _guarded("update promotion", impl)

    async def set_active(
        self, promotion_id: PromotionId, active: bool
    ) -> Result[bool, StoreError]:
        async def impl() -> bool:
            async with self._session_factory() as session:
                result = await session.execute(
                    update(PromotionTable)
                    .where(PromotionTable.id == promotion_id)
                    .values(is_active=active)
                )
                await session.commit()
                return _rowcount(result) == 1

        return await _guarded("set promotion active", impl)

    async def record_usage(
        self, promotion_id: PromotionId, user_id: UserId, now: datetime
    ) -> Result[bool, StoreError]:
        """
        Global cap: conditional UPDATE on used_count.
        Per-user cap: conditional UPDATE on the observed count, or INSERT
        for a first use. Either guard failing rolls the whole unit back.
        """

        async def impl() -> bool:
            async with self._session_factory() as session:
                promotion = await session.get(PromotionTable, promotion_id)
                if promotion is None:
                    return False
                usage = await session.get(PromotionUsageTable, (promotion_id, user_id))
                prior = usage.count if usage is not None else 0
                if not usage_permits(
                    UsageType(promotion.usage_type), prior, promotion.max_uses_per_user
                ):
                    return False

                counted = await session.execute(
                    update(PromotionTable)
                    .where(
                        PromotionTable.id == promotion_id,
                        or_(
                            PromotionTable.max_total_uses.is_(None),
                            PromotionTable.used_count < PromotionTable.max_total_uses,
                        ),
                    )
                    .values(used_count=PromotionTable.used_count + 1)
                )
                if _rowcount(counted) != 1:
                    await session.rollback()
                    return False

                if usage is None:
                    session.add(
                        PromotionUsageTable(
                            promotion_id=promotion_id,
                            user_id=user_id,
                            count=1,
                            last_used_at=now,
                        )
                    )
                else:
                    bumped = await session.execute(
                        update(PromotionUsageTable)
                        .where(
                            PromotionUsageTable.promotion_id == promotion_id,
                            PromotionUsageTable.user_id == user_id,
                            PromotionUsageTable.count == prior,
                        )
                        .values(count=prior + 1, last_used_at=now)
                    )
                    if _rowcount(bumped) != 1:
                        await session.rollback()
                        return False
                try:
                    await session.commit()
                except IntegrityError:
                    await session.rollback()
                    return False
                return True

        return await _guarded("record promotion usage", impl)

    async def revert_usage(
        self, promotion_id: PromotionId, user_id: UserId
    ) -> Result[None, StoreError]:
        async def impl() -> None:
            async with self._session_factory() as session:
                await session.execute(
                    update(PromotionTable)
                    .where(PromotionTable.id == promotion_id, PromotionTable.used_count > 0)
                    .values(used_count=PromotionTable.used_count - 1)
                )
                usage = await session.get(PromotionUsageTable, (promotion_id, user_id))
                if usage is not None:
                    if usage.count <= 1:
                        await session.delete(usage)
                    else:
                        usage.count -= 1
                await session.commit()

        return await _guarded("revert promotion usage", impl)


# ═══════════════════════════════════════════════════════════════════════════════
# Carts
# ═══════════════════════════════════════════════════════════════════════════════


def _cart_from_row(row: CartTable) -> Cart:
    return Cart(
        user_id=row.user_id,
        lines=tuple(load_cart_line(line) for line in row.lines),
        subtotal=Decimal(row.subtotal),
        total=Decimal(row.total),
        discounts=Decimal(row.discounts),
        last_reconciled_at=as_utc(row.last_reconciled_at),
        version=row.version,
    )


def _cart_values(cart: Cart) -> dict[str, Any]:
    return {
        "lines": [dump_cart_line(line) for line in cart.lines],
        "subtotal": cart.subtotal,
        "total": cart.total,
        "discounts": cart.discounts,
        "last_reconciled_at": cart.last_reconciled_at,
    }


class SQLAlchemyCartStore:
    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    async def get(self, user_id: UserId) -> Result[Cart | None, StoreError]:
        async def impl() -> Cart | None:
            async with self._session_factory() as session:
                row = await session.get(CartTable, user_id)
                return _cart_from_row(row) if row is not None else None

        return await _guarded("get cart", impl)

    async def save(self, cart: Cart) -> Result[Cart | None, StoreError]:
        async def impl() -> Cart | None:
            saved = Cart(
                user_id=cart.user_id,
                lines=cart.lines,
                subtotal=cart.subtotal,
                total=cart.total,
                discounts=cart.discounts,
                last_reconciled_at=cart.last_reconciled_at,
                version=cart.version + 1,
            )
            async with self._session_factory() as session:
                if cart.version == 0:
                    session.add(
                        CartTable(user_id=cart.user_id, version=1, **_cart_values(cart))
                    )
                    try:
                        await session.commit()
                    except IntegrityError:
                        await session.rollback()
                        return None
                    return saved

                result = await session.execute(
                    update(CartTable)
                    .where(CartTable.user_id == cart.user_id, CartTable.version == cart.version)
                    .values(version=cart.version + 1, **_cart_values(cart))
                )
                await session.commit()
                return saved if _rowcount(result) == 1 else None

        return await _guarded("save cart", impl)


# ═══════════════════════════════════════════════════════════════════════════════
# Orders
# ═══════════════════════════════════════════════════════════════════════════════


def _order_from_row(row: OrderTable) -> Order:
    return Order(
        id=row.id,
        user_id=row.user_id,
        lines=tuple(load_order_line(line) for line in row.lines),
        subtotal=Decimal(row.subtotal),
        product_discounts=Decimal(row.product_discounts),
        applied_promotions=tuple(
            load_applied_promotion(p) for p in row.applied_promotions
        ),
        delivery_fee=Decimal(row.delivery_fee),
        total=Decimal(row.total),
        payment=Payment(
            method=PaymentMethod(row.payment_method),
            status=PaymentStatus(row.payment_status),
            transaction_id=row.transaction_id,
        ),
        delivery_address=load_address(row.delivery_address),
        status=OrderStatus(row.status),
        placed_at=as_utc(row.placed_at),  # type: ignore[arg-type]
        updated_at=as_utc(row.updated_at),  # type: ignore[arg-type]
        cancellation_reason=row.cancellation_reason,
    )


def _order_values(order: Order) -> dict[str, Any]:
    return {
        "user_id": order.user_id,
        "status": str(order.status),
        "lines": [dump_order_line(line) for line in order.lines],
        "applied_promotions": [
            dump_applied_promotion(p) for p in order.applied_promotions
        ],
        "delivery_address": dump_address(order.delivery_address),
        "subtotal": order.subtotal,
        "product_discounts": order.product_discounts,
        "delivery_fee": order.delivery_fee,
        "total": order.total,
        "payment_method": str(order.payment.method),
        "payment_status": str(order.payment.status),
        "transaction_id": order.payment.transaction_id,
        "placed_at": order.placed_at,
        "updated_at": order.updated_at,
        "cancellation_reason": order.cancellation_reason,
    }


class SQLAlchemyOrderStore:
    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    async def insert(self, order: Order) -> Result[None, StoreError]:
        async def impl() -> None:
            async with self._session_factory() as session:
                session.add(OrderTable(id=order.id, **_order_values(order)))
                await session.commit()

        return await _guarded("insert order", impl)

    async def get(self, order_id: OrderId) -> Result[Order | None, StoreError]:
        async def impl() -> Order | None:
            async with self._session_factory() as session:
                row = await session.get(OrderTable, order_id)
                return _order_from_row(row) if row is not None else None

        return await _guarded("get order", impl)

    async def list_for_user(self, user_id: UserId) -> Result[list[Order], StoreError]:
        async def impl() -> list[Order]:
            async with self._session_factory() as session:
                rows = await session.scalars(
                    select(OrderTable)
                    .where(OrderTable.user_id == user_id)
                    .order_by(OrderTable.placed_at.desc())
                )
                return [_order_from_row(row) for row in rows]

        return await _guarded("list orders", impl)

    async def list_all(self) -> Result[list[Order], StoreError]:
        async def impl() -> list[Order]:
            async with self._session_factory() as session:
                rows = await session.scalars(
                    select(OrderTable).order_by(OrderTable.placed_at.desc())
                )
                return [_order_from_row(row) for row in rows]

        return await _guarded("list all orders", impl)

    async def replace_if(
        self, order: Order, expected: OrderStatus
    ) -> Result[bool, StoreError]:
        async def impl() -> bool:
            async with self._session_factory() as session:
                result = await session.execute(
                    update(OrderTable)
                    .where(OrderTable.id == order.id, OrderTable.status == str(expected))
                    .values(**_order_values(order))
                )
                await session.commit()
                return _rowcount(result) == 1

        return await _guarded("replace order", impl)

    async def delete(self, order_id: OrderId) -> Result[bool, StoreError]:
        async def impl() -> bool:
            async with self._session_factory() as session:
                result = await session.execute(
                    delete(OrderTable).where(OrderTable.id == order_id)
                )
                await session.commit()
                return _rowcount(result) > 0

        return await _guarded("delete order", impl)


# ═══════════════════════════════════════════════════════════════════════════════
# Checkout Attempts
# ═══════════════════════════════════════════════════════════════════════════════


def _attempt_from_row(row: CheckoutAttemptTable) -> Attempt:
    return Attempt(
        key=row.key,
        state=AttemptState(row.status),
        order_id=row.order_id,
        error_code=row.error_code,
        created_at=as_utc(row.created_at),  # type: ignore[arg-type]
        expires_at=as_utc(row.expires_at),
    )


def _expiry(now: datetime, ttl: timedelta | None) -> datetime | None:
    return now + ttl if ttl is not None else None


class SQLAlchemyAttemptStore:
    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    async def get(self, key: str, now: datetime) -> Result[Attempt | None, StoreError]:
        async def impl() -> Attempt | None:
            async with self._session_factory() as session:
                row = await session.get(CheckoutAttemptTable, key)
                if row is None:
                    return None
                attempt = _attempt_from_row(row)
                return None if attempt.is_expired(now) else attempt

        return await _guarded("get attempt", impl)

    async def begin(
        self, key: str, now: datetime, ttl: timedelta | None
    ) -> Result[bool, StoreError]:
        async def impl() -> bool:
            async with self._session_factory() as session:
                row = await session.get(CheckoutAttemptTable, key)
                if row is not None:
                    if not _attempt_from_row(row).is_expired(now):
                        return False
                    # Expired attempts may only be taken over once.
                    taken = await session.execute(
                        delete(CheckoutAttemptTable).where(
                            CheckoutAttemptTable.key == key,
                            CheckoutAttemptTable.expires_at == row.expires_at,
                        )
                    )
                    if _rowcount(taken) != 1:
                        await session.rollback()
                        return False
                session.add(
                    CheckoutAttemptTable(
                        key=key,
                        status=str(AttemptState.PENDING),
                        created_at=now,
                        expires_at=_expiry(now, ttl),
                    )
                )
                try:
                    await session.commit()
                except IntegrityError:
                    await session.rollback()
                    return False
                return True

        return await _guarded("begin attempt", impl)

    async def _finish(
        self,
        key: str,
        state: AttemptState,
        order_id: OrderId | None,
        error_code: str | None,
        expires_at: datetime | None,
    ) -> None:
        async with self._session_factory() as session:
            await session.execute(
                update(CheckoutAttemptTable)
                .where(CheckoutAttemptTable.key == key)
                .values(
                    status=str(state),
                    order_id=order_id,
                    error_code=error_code,
                    expires_at=expires_at,
                )
            )
            await session.commit()

    async def complete(
        self, key: str, order_id: OrderId, now: datetime, ttl: timedelta | None
    ) -> Result[None, StoreError]:
        return await _guarded(
            "complete attempt",
            lambda: self._finish(
                key, AttemptState.COMPLETED, order_id, None, _expiry(now, ttl)
            ),
        )

    async def fail(
        self, key: str, error_code: str, now: datetime, ttl: timedelta | None
    ) -> Result[None, StoreError]:
        return await _guarded(
            "fail attempt",
            lambda: self._finish(
                key, AttemptState.FAILED, None, error_code, _expiry(now, ttl)
            ),
        )

    async def delete(self, key: str) -> Result[bool, StoreError]:
        async def impl() -> bool:
            async with self._session_factory() as session:
                result = await session.execute(
                    delete(CheckoutAttemptTable).where(CheckoutAttemptTable.key == key)
                )
                await session.commit()
                return _rowcount(result) > 0

        return await _guarded("delete attempt", impl)


# ═══════════════════════════════════════════════════════════════════════════════
# Database Setup
# ═══════════════════════════════════════════════════════════════════════════════


async def create_database(
    url: str = "sqlite+aiosqlite:///:memory:",
) -> tuple[SessionFactory, AsyncEngine]:
    """
    Create tables and return (session_factory, engine).

    Note: An in-memory SQLite database lives in one connection, so it is
    pinned with StaticPool and sessions take turns on it: one session's
    rollback must never undo another's uncommitted conditional UPDATE.
    """
    factory: SessionFactory
    if ":memory:" in url:
        engine = create_async_engine(url, echo=False, poolclass=StaticPool)
        factory = serialised(async_sessionmaker(engine, expire_on_commit=False))
    else:
        engine = create_async_engine(url, echo=False)
        factory = async_sessionmaker(engine, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    return factory, engine


def serialised(factory: async_sessionmaker[AsyncSession]) -> SessionFactory:
    """Session factory whose sessions run one at a time."""
    lock = asyncio.Lock()

    @asynccontextmanager
    async def session() -> AsyncIterator[AsyncSession]:
        async with lock, factory() as opened:
            yield opened

    return session


def sqlalchemy_stores(session_factory: SessionFactory) -> Stores:
    return Stores(
        products=SQLAlchemyProductStore(session_factory),
        promotions=SQLAlchemyPromotionStore(session_factory),
        carts=SQLAlchemyCartStore(session_factory),
        orders=SQLAlchemyOrderStore(session_factory),
        attempts=SQLAlchemyAttemptStore(session_factory),
    )


# ═══════════════════════════════════════════════════════════════════════════════
# Exports
# ═══════════════════════════════════════════════════════════════════════════════

__all__ = (
    "Base",
    "ProductTable",
    "PromotionTable",
    "PromotionUsageTable",
    "CartTable",
    "OrderTable",
    "CheckoutAttemptTable",
    "SQLAlchemyProductStore",
    "SQLAlchemyPromotionStore",
    "SQLAlchemyCartStore",
    "SQLAlchemyOrderStore",
    "SQLAlchemyAttemptStore",
    "create_database",
    "serialised",
    "sqlalchemy_stores",
)
