"""
Sales Service - atomic sale completion and voiding

Both coordinators run as one database transaction through run_with_retry:

    READ   cart products / sale + items, then every affected SKU family
    PLAN   stock writes, totals and payment checks (pure, may raise)
    WRITE  guarded stock updates, then the sale rows
    COMMIT

No write is issued before the read phase is finished, and any failure rolls
the whole unit back: no partial stock change, no orphan sale.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP

from flask import current_app

from ..extensions import db
from ..models import Product, Sale, SaleItem
from ..models.auth import ROLE_ADMINISTRATOR
from ..models.sales import PAYMENT_METHODS, SALE_COMPLETED, SALE_VOIDED
from ..time_utils import utcnow
from . import stock_service
from .auth_service import Actor, require_role
from .concurrency import run_with_retry
from .errors import (
    AlreadyVoidedError,
    EmptyCartError,
    InsufficientPaymentError,
    InvalidCartError,
    NotAuthenticatedError,
    ProductNotFoundError,
    SaleNotFoundError,
)
from .stock_service import StockMovement


@dataclass(frozen=True)
class CartLine:
    product_id: int
    quantity: int
    price_cents: int | None = None  # None -> catalog price


@dataclass(frozen=True)
class PaymentDetails:
    method: str
    amount_paid_cents: int | None = None
    tax_rate: Decimal | None = None


@dataclass(frozen=True)
class SaleTotals:
    subtotal_cents: int
    tax_cents: int
    total_cents: int
    amount_paid_cents: int
    change_due_cents: int


@dataclass(frozen=True)
class _PricedLine:
    product: Product
    quantity: int
    price_cents: int

    @property
    def line_total_cents(self) -> int:
        return self.price_cents * self.quantity


def calculate_tax(subtotal_cents: int, tax_rate: Decimal) -> int:
    """Tax rounded half-up to the cent."""
    tax = (Decimal(subtotal_cents) * tax_rate).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return int(tax)


def calculate_totals(line_totals: list[int], payment: PaymentDetails, tax_rate: Decimal) -> SaleTotals:
    subtotal = sum(line_totals)
    tax = calculate_tax(subtotal, tax_rate)
    total = subtotal + tax

    amount_paid = payment.amount_paid_cents
    if amount_paid is None and payment.method == "card":
        amount_paid = total

    if amount_paid is None or amount_paid < total:
        raise InsufficientPaymentError(
            "The amount paid is less than the total amount due",
            details={"total_cents": total, "amount_paid_cents": amount_paid},
        )

    return SaleTotals(
        subtotal_cents=subtotal,
        tax_cents=tax,
        total_cents=total,
        amount_paid_cents=amount_paid,
        change_due_cents=amount_paid - total,
    )


def _default_tax_rate() -> Decimal:
    return Decimal(str(current_app.config.get("TAX_RATE", "0.15")))


def _validate_cart(cart: list[CartLine]) -> None:
    if not cart:
        raise EmptyCartError("Add items to the cart to complete a sale")

    for index, line in enumerate(cart):
        if not isinstance(line.quantity, int) or isinstance(line.quantity, bool) or line.quantity <= 0:
            raise InvalidCartError(
                "Cart quantities must be positive integers",
                details={"line": index, "quantity": line.quantity},
            )
        if line.price_cents is not None and line.price_cents < 0:
            raise InvalidCartError(
                "Cart prices cannot be negative",
                details={"line": index, "price_cents": line.price_cents},
            )


def _validate_payment(payment: PaymentDetails) -> None:
    if payment.method not in PAYMENT_METHODS:
        raise InvalidCartError(
            f"payment method must be one of: {', '.join(PAYMENT_METHODS)}",
            details={"method": payment.method},
        )
    if payment.amount_paid_cents is not None and payment.amount_paid_cents < 0:
        raise InvalidCartError("amount paid cannot be negative")


def _read_cart_products(cart: list[CartLine]) -> dict[int, Product]:
    product_ids = sorted({line.product_id for line in cart})
    products = {
        p.id: p
        for p in (
            db.session.query(Product)
            .filter(Product.id.in_(product_ids))
            .populate_existing()
            .all()
        )
    }
    missing = [pid for pid in product_ids if pid not in products or not products[pid].is_active]
    if missing:
        raise ProductNotFoundError("Product not found", details={"product_ids": missing})
    return products


def _price_lines(cart: list[CartLine], products: dict[int, Product]) -> list[_PricedLine]:
    priced = []
    for line in cart:
        product = products[line.product_id]
        price = line.price_cents if line.price_cents is not None else product.price_cents
        if price is None:
            raise InvalidCartError(
                f"Product {product.sku} has no price",
                details={"product_id": product.id},
            )
        priced.append(_PricedLine(product=product, quantity=line.quantity, price_cents=price))
    return priced


def complete_sale(cart: list[CartLine], payment: PaymentDetails, actor: Actor | None) -> Sale:
    """
    Record a sale and remove its units from stock, atomically.

    Returns the committed Sale (with items). Raises a SaleError subclass:
    NotAuthenticated, EmptyCart, InvalidCart, ProductNotFound,
    InsufficientPayment, InsufficientStock, BaseProductNotFound or
    TransactionConflict.
    """
    if actor is None:
        raise NotAuthenticatedError("Authentication required")

    _validate_cart(cart)
    _validate_payment(payment)
    tax_rate = payment.tax_rate if payment.tax_rate is not None else _default_tax_rate()

    def _op():
        # --- READ PHASE ---
        products = _read_cart_products(cart)
        deltas = stock_service.group_by_base_sku(
            StockMovement.for_product(products[line.product_id], line.quantity)
            for line in cart
        )
        read_set = stock_service.load_families(db.session, deltas.keys())

        # --- PLAN ---
        stock_writes = stock_service.plan_removal(read_set, deltas)
        priced = _price_lines(cart, products)
        totals = calculate_totals([p.line_total_cents for p in priced], payment, tax_rate)

        # --- WRITE PHASE ---
        stock_service.apply_stock_writes(db.session, stock_writes)

        now = utcnow()
        sale = Sale(
            subtotal_cents=totals.subtotal_cents,
            tax_cents=totals.tax_cents,
            total_cents=totals.total_cents,
            amount_paid_cents=totals.amount_paid_cents,
            change_due_cents=totals.change_due_cents,
            payment_method=payment.method,
            salesperson_id=actor.user_id,
            salesperson_name=actor.display_name,
            status=SALE_COMPLETED,
            created_at=now,
        )
        db.session.add(sale)

        for line in priced:
            product = line.product
            sale.items.append(SaleItem(
                product_id=product.id,
                product_name=product.name,
                product_sku=product.sku,
                base_product_sku=stock_service.resolve_base_sku(product),
                contained_units=product.contained_units or 1,
                quantity=line.quantity,
                price_cents=line.price_cents,
                line_total_cents=line.line_total_cents,
                created_at=now,
            ))

        db.session.commit()
        return sale

    sale = run_with_retry(_op)
    current_app.logger.info(
        "Sale %s completed by user %s: %d item(s), total %d cents",
        sale.id, actor.user_id, len(sale.items), sale.total_cents,
    )
    return sale


def void_sale(sale_id: int, actor: Actor | None, reason: str | None = None) -> Sale:
    """
    Void a completed sale and return its units to stock, atomically.

    The actor's administrator role is re-checked against the users table
    before anything is read. Units are returned per the base SKU and
    contained units recorded on each sale item.
    """
    voider = require_role(actor, ROLE_ADMINISTRATOR)
    voider_id, voider_name = voider.id, voider.display_name

    def _op():
        # --- READ PHASE ---
        sale = (
            db.session.query(Sale)
            .filter_by(id=sale_id)
            .populate_existing()
            .first()
        )
        if not sale:
            raise SaleNotFoundError("Sale not found", details={"sale_id": sale_id})

        if sale.status == SALE_VOIDED:
            raise AlreadyVoidedError("Sale has already been voided", details={"sale_id": sale_id})

        items = db.session.query(SaleItem).filter_by(sale_id=sale.id).order_by(SaleItem.id).all()
        deltas = stock_service.group_by_base_sku(
            StockMovement(
                sku=item.product_sku,
                base_product_sku=item.base_product_sku,
                contained_units=item.contained_units,
                quantity=item.quantity,
            )
            for item in items
        )
        read_set = stock_service.load_families(db.session, deltas.keys())

        # --- PLAN ---
        stock_writes = stock_service.plan_return(read_set, deltas)

        # --- WRITE PHASE ---
        stock_service.apply_stock_writes(db.session, stock_writes)

        sale.status = SALE_VOIDED
        sale.voided_at = utcnow()
        sale.voided_by_user_id = voider_id
        sale.voided_by_name = voider_name
        sale.void_reason = reason

        db.session.commit()
        return sale

    sale = run_with_retry(_op)
    current_app.logger.info("Sale %s voided by user %s", sale.id, voider_id)
    return sale


def get_sale(sale_id: int) -> Sale | None:
    return db.session.get(Sale, sale_id)


def list_sales(status: str | None = None, limit: int = 50, offset: int = 0) -> list[Sale]:
    query = db.session.query(Sale)
    if status:
        query = query.filter(Sale.status == status)
    return (
        query.order_by(Sale.created_at.desc(), Sale.id.desc())
        .offset(max(offset, 0))
        .limit(min(max(limit, 1), 200))
        .all()
    )
