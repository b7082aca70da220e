"""
Sale and void transaction tests.

Verifies:
- Selling a packaging variant removes base units and rederives the family
- Failed sales leave no stock change and no sale row
- Voids return the recorded base units and cannot be repeated
- Voiding re-checks the administrator role against the users table
- A concurrent commit against the same family forces a fresh read
- Totals, tax rounding and payment rules
"""

from decimal import Decimal

import pytest
from sqlalchemy.orm.exc import StaleDataError

from liquorpos.extensions import db
from liquorpos.models import Product, Sale, SaleItem
from liquorpos.models.auth import ROLE_SALES
from liquorpos.services import sales_service, stock_service
from liquorpos.services.errors import (
    AlreadyVoidedError,
    BaseProductNotFoundError,
    EmptyCartError,
    InsufficientPaymentError,
    InsufficientStockError,
    InvalidCartError,
    NotAuthenticatedError,
    NotAuthorizedError,
    ProductNotFoundError,
    SaleNotFoundError,
    TransactionConflictError,
)
from liquorpos.services.sales_service import (
    CartLine,
    PaymentDetails,
    calculate_tax,
    calculate_totals,
    complete_sale,
    void_sale,
)

from conftest import make_product, reload


CARD = PaymentDetails(method="card")


def _stock(product):
    fresh = reload(Product, product.id)
    return fresh.stock, fresh.status


def _sale_count():
    return db.session.query(Sale).count()


# =============================================================================
# COMPLETING SALES
# =============================================================================


class TestCompleteSale:
    def test_selling_six_packs_reduces_base(self, beer, sales_actor):
        single, six = beer
        sale = complete_sale(
            [CartLine(product_id=six.id, quantity=2)],
            PaymentDetails(method="cash", amount_paid_cents=30000),
            sales_actor,
        )

        assert _stock(single) == (88, "In Stock")
        assert _stock(six) == (14, "In Stock")

        assert sale.status == "completed"
        assert sale.subtotal_cents == 22000
        assert sale.tax_cents == 3300
        assert sale.total_cents == 25300
        assert sale.amount_paid_cents == 30000
        assert sale.change_due_cents == 4700
        assert sale.salesperson_id == sales_actor.user_id
        assert sale.salesperson_name == "Sam Seller"

    def test_family_drops_to_low_stock(self, beer, sales_actor):
        single, six = beer
        complete_sale(
            [
                CartLine(product_id=six.id, quantity=14),
                CartLine(product_id=single.id, quantity=8),
            ],
            CARD,
            sales_actor,
        )

        assert _stock(single) == (8, "Low Stock")
        assert _stock(six) == (1, "Low Stock")

    def test_items_snapshot_product_and_family(self, beer, sales_actor):
        _, six = beer
        sale = complete_sale([CartLine(product_id=six.id, quantity=2)], CARD, sales_actor)

        items = db.session.query(SaleItem).filter_by(sale_id=sale.id).all()
        assert len(items) == 1
        item = items[0]
        assert item.product_sku == "B6"
        assert item.product_name == "Beer-SixPack"
        assert item.base_product_sku == "B1"
        assert item.contained_units == 6
        assert item.quantity == 2
        assert item.price_cents == 11000
        assert item.line_total_cents == 22000

    def test_cart_price_overrides_catalog(self, beer, sales_actor):
        single, _ = beer
        sale = complete_sale(
            [CartLine(product_id=single.id, quantity=3, price_cents=1500)],
            CARD,
            sales_actor,
        )
        assert sale.subtotal_cents == 4500

    def test_unrelated_family_untouched(self, beer, wine, sales_actor):
        _, six = beer
        complete_sale([CartLine(product_id=six.id, quantity=1)], CARD, sales_actor)
        assert _stock(wine) == (50, "In Stock")

    def test_card_defaults_to_exact_total(self, beer, sales_actor):
        single, _ = beer
        sale = complete_sale([CartLine(product_id=single.id, quantity=1)], CARD, sales_actor)
        assert sale.amount_paid_cents == sale.total_cents == 2300
        assert sale.change_due_cents == 0


class TestCompleteSaleFailures:
    """Every failure leaves stock and the sales table exactly as they were."""

    def test_oversell_writes_nothing(self, beer, sales_actor):
        single, six = beer
        with pytest.raises(InsufficientStockError) as exc:
            complete_sale([CartLine(product_id=single.id, quantity=101)], CARD, sales_actor)

        assert exc.value.sku == "B1"
        assert exc.value.shortfall == 1
        assert _stock(single) == (100, "In Stock")
        assert _stock(six) == (16, "In Stock")
        assert _sale_count() == 0

    def test_variants_share_base_stock(self, beer, sales_actor):
        single, six = beer
        # 16 six-packs (96) plus 5 singles is 101 base units
        with pytest.raises(InsufficientStockError):
            complete_sale(
                [
                    CartLine(product_id=six.id, quantity=16),
                    CartLine(product_id=single.id, quantity=5),
                ],
                CARD,
                sales_actor,
            )
        assert _stock(single) == (100, "In Stock")
        assert _sale_count() == 0

    def test_shortage_in_one_family_blocks_the_other(self, beer, wine, sales_actor):
        single, _ = beer
        with pytest.raises(InsufficientStockError):
            complete_sale(
                [
                    CartLine(product_id=single.id, quantity=5),
                    CartLine(product_id=wine.id, quantity=51),
                ],
                CARD,
                sales_actor,
            )
        assert _stock(single) == (100, "In Stock")
        assert _stock(wine) == (50, "In Stock")

    def test_underpayment_writes_nothing(self, beer, sales_actor):
        single, _ = beer
        with pytest.raises(InsufficientPaymentError) as exc:
            complete_sale(
                [CartLine(product_id=single.id, quantity=1)],
                PaymentDetails(method="cash", amount_paid_cents=2299),
                sales_actor,
            )
        assert exc.value.details == {"total_cents": 2300, "amount_paid_cents": 2299}
        assert _stock(single) == (100, "In Stock")
        assert _sale_count() == 0

    def test_cash_requires_amount(self, beer, sales_actor):
        single, _ = beer
        with pytest.raises(InsufficientPaymentError):
            complete_sale(
                [CartLine(product_id=single.id, quantity=1)],
                PaymentDetails(method="cash"),
                sales_actor,
            )

    def test_empty_cart(self, beer, sales_actor):
        with pytest.raises(EmptyCartError):
            complete_sale([], CARD, sales_actor)

    @pytest.mark.parametrize("quantity", [0, -1])
    def test_non_positive_quantity(self, beer, sales_actor, quantity):
        single, _ = beer
        with pytest.raises(InvalidCartError):
            complete_sale([CartLine(product_id=single.id, quantity=quantity)], CARD, sales_actor)
        assert _sale_count() == 0

    def test_unknown_payment_method(self, beer, sales_actor):
        single, _ = beer
        with pytest.raises(InvalidCartError):
            complete_sale(
                [CartLine(product_id=single.id, quantity=1)],
                PaymentDetails(method="voucher", amount_paid_cents=5000),
                sales_actor,
            )

    def test_unknown_product(self, beer, sales_actor):
        with pytest.raises(ProductNotFoundError) as exc:
            complete_sale([CartLine(product_id=9999, quantity=1)], CARD, sales_actor)
        assert exc.value.details == {"product_ids": [9999]}

    def test_inactive_product(self, beer, sales_actor):
        single, _ = beer
        single.is_active = False
        db.session.commit()

        with pytest.raises(ProductNotFoundError):
            complete_sale([CartLine(product_id=single.id, quantity=1)], CARD, sales_actor)

    def test_variant_with_missing_base(self, db_session, sales_actor):
        orphan = make_product(
            "X6", "Orphan-SixPack", stock=3,
            base_product_sku="X1", contained_units=6, price_cents=500,
        )
        with pytest.raises(BaseProductNotFoundError):
            complete_sale([CartLine(product_id=orphan.id, quantity=1)], CARD, sales_actor)
        assert _stock(orphan) == (3, "In Stock")
        assert _sale_count() == 0

    def test_requires_actor(self, beer):
        single, _ = beer
        with pytest.raises(NotAuthenticatedError):
            complete_sale([CartLine(product_id=single.id, quantity=1)], CARD, None)


# =============================================================================
# VOIDING SALES
# =============================================================================


class TestVoidSale:
    def test_void_restores_family(self, beer, sales_actor, admin_actor):
        single, six = beer
        sale = complete_sale([CartLine(product_id=six.id, quantity=2)], CARD, sales_actor)
        assert _stock(single) == (88, "In Stock")

        voided = void_sale(sale.id, admin_actor, reason="Customer returned goods")

        assert voided.status == "voided"
        assert voided.voided_at is not None
        assert voided.voided_by_user_id == admin_actor.user_id
        assert voided.voided_by_name == "Ada Admin"
        assert voided.void_reason == "Customer returned goods"
        assert _stock(single) == (100, "In Stock")
        assert _stock(six) == (16, "In Stock")

    def test_void_twice_fails(self, beer, sales_actor, admin_actor):
        single, six = beer
        sale = complete_sale([CartLine(product_id=six.id, quantity=2)], CARD, sales_actor)
        void_sale(sale.id, admin_actor)

        with pytest.raises(AlreadyVoidedError):
            void_sale(sale.id, admin_actor)
        assert _stock(single) == (100, "In Stock")

    def test_void_keeps_totals(self, beer, sales_actor, admin_actor):
        _, six = beer
        sale = complete_sale([CartLine(product_id=six.id, quantity=2)], CARD, sales_actor)
        voided = void_sale(sale.id, admin_actor)
        assert (voided.subtotal_cents, voided.tax_cents, voided.total_cents) == (22000, 3300, 25300)

    def test_void_uses_recorded_contained_units(self, beer, sales_actor, admin_actor):
        single, six = beer
        sale = complete_sale([CartLine(product_id=six.id, quantity=1)], CARD, sales_actor)

        # Catalog edit after the sale does not change what the void returns.
        fresh = reload(Product, six.id)
        fresh.contained_units = 12
        db.session.commit()

        void_sale(sale.id, admin_actor)
        assert reload(Product, single.id).stock == 100

    def test_unknown_sale(self, db_session, admin_actor):
        with pytest.raises(SaleNotFoundError):
            void_sale(4242, admin_actor)

    def test_sales_role_cannot_void(self, beer, sales_actor):
        single, six = beer
        sale = complete_sale([CartLine(product_id=six.id, quantity=2)], CARD, sales_actor)

        with pytest.raises(NotAuthorizedError):
            void_sale(sale.id, sales_actor)

        assert reload(Sale, sale.id).status == "completed"
        assert _stock(single) == (88, "In Stock")

    def test_role_is_read_from_users_table(self, beer, sales_actor, admin_actor, admin_user):
        _, six = beer
        sale = complete_sale([CartLine(product_id=six.id, quantity=2)], CARD, sales_actor)

        # Demoted after the actor snapshot was taken.
        admin_user.role = ROLE_SALES
        db.session.commit()

        with pytest.raises(NotAuthorizedError):
            void_sale(sale.id, admin_actor)
        assert reload(Sale, sale.id).status == "completed"

    def test_deactivated_admin_cannot_void(self, beer, sales_actor, admin_actor, admin_user):
        _, six = beer
        sale = complete_sale([CartLine(product_id=six.id, quantity=2)], CARD, sales_actor)

        admin_user.is_active = False
        db.session.commit()

        with pytest.raises(NotAuthorizedError):
            void_sale(sale.id, admin_actor)

    def test_requires_actor(self, db_session):
        with pytest.raises(NotAuthenticatedError):
            void_sale(1, None)


# =============================================================================
# CONCURRENCY
# =============================================================================


class TestConcurrentSales:
    def test_competing_sale_forces_fresh_read(self, beer, sales_actor, monkeypatch):
        """
        A second sale commits against B1 between the first sale's read and
        write phases. The first sale must retry from fresh reads and apply
        its units on top of the second, not over it.
        """
        single, six = beer
        original = stock_service.load_families
        calls = []

        def interleaved(session, base_skus):
            calls.append(list(base_skus))
            read_set = original(session, base_skus)
            if len(calls) == 1:
                complete_sale([CartLine(product_id=single.id, quantity=6)], CARD, sales_actor)
            return read_set

        monkeypatch.setattr(stock_service, "load_families", interleaved)

        complete_sale([CartLine(product_id=six.id, quantity=2)], CARD, sales_actor)

        assert len(calls) == 3
        assert _stock(single) == (82, "In Stock")
        assert _stock(six) == (13, "In Stock")
        assert _sale_count() == 2

    def test_conflict_after_retries_exhausted(self, beer, sales_actor, monkeypatch):
        single, six = beer
        attempts = []

        def always_stale(session, writes):
            attempts.append(1)
            raise StaleDataError("simulated concurrent update")

        monkeypatch.setattr(stock_service, "apply_stock_writes", always_stale)

        with pytest.raises(TransactionConflictError) as exc:
            complete_sale([CartLine(product_id=six.id, quantity=2)], CARD, sales_actor)

        assert exc.value.details == {"attempts": 3}
        assert len(attempts) == 3
        assert _stock(single) == (100, "In Stock")
        assert _sale_count() == 0

    def test_sale_and_void_stock_is_conserved(self, beer, sales_actor, admin_actor):
        single, six = beer
        sales = [
            complete_sale([CartLine(product_id=six.id, quantity=3)], CARD, sales_actor),
            complete_sale([CartLine(product_id=single.id, quantity=7)], CARD, sales_actor),
            complete_sale(
                [CartLine(product_id=six.id, quantity=1), CartLine(product_id=single.id, quantity=2)],
                CARD,
                sales_actor,
            ),
        ]
        assert _stock(single) == (100 - 18 - 7 - 8, "In Stock")

        void_sale(sales[1].id, admin_actor)
        assert _stock(single) == (74, "In Stock")
        assert _stock(six) == (12, "In Stock")


# =============================================================================
# TOTALS
# =============================================================================


class TestTotals:
    def test_tax_rounds_half_up(self):
        # 333 * 0.15 = 49.95
        assert calculate_tax(333, Decimal("0.15")) == 50
        # 10 * 0.15 = 1.5
        assert calculate_tax(10, Decimal("0.15")) == 2
        # 3 * 0.15 = 0.45
        assert calculate_tax(3, Decimal("0.15")) == 0

    def test_total_is_subtotal_plus_tax(self):
        totals = calculate_totals([22000], PaymentDetails(method="cash", amount_paid_cents=30000), Decimal("0.15"))
        assert totals.subtotal_cents == 22000
        assert totals.tax_cents == 3300
        assert totals.total_cents == 25300
        assert totals.change_due_cents == 4700

    def test_payment_rate_overrides_config(self, beer, sales_actor):
        single, _ = beer
        sale = complete_sale(
            [CartLine(product_id=single.id, quantity=1)],
            PaymentDetails(method="card", tax_rate=Decimal("0")),
            sales_actor,
        )
        assert sale.tax_cents == 0
        assert sale.total_cents == 2000

    def test_recorded_totals_survive_price_change(self, beer, sales_actor):
        single, _ = beer
        sale = complete_sale([CartLine(product_id=single.id, quantity=1)], CARD, sales_actor)

        fresh = reload(Product, single.id)
        fresh.price_cents = 9999
        db.session.commit()

        assert reload(Sale, sale.id).total_cents == 2300


# =============================================================================
# HISTORY
# =============================================================================


class TestListSales:
    def test_filter_by_status(self, beer, sales_actor, admin_actor):
        single, _ = beer
        first = complete_sale([CartLine(product_id=single.id, quantity=1)], CARD, sales_actor)
        complete_sale([CartLine(product_id=single.id, quantity=1)], CARD, sales_actor)
        void_sale(first.id, admin_actor)

        assert [s.id for s in sales_service.list_sales(status="voided")] == [first.id]
        assert len(sales_service.list_sales(status="completed")) == 1
        assert len(sales_service.list_sales()) == 2
