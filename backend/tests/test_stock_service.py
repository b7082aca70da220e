"""
Stock reconciliation engine tests.

Verifies:
- Status derivation at the threshold boundaries
- Base-unit grouping across packaging variants
- Family reads reject variants without a base record
- Removal plans report every short base SKU and write nothing
- Guarded writes refuse rows that changed after the read phase
"""

import pytest
from sqlalchemy.orm.exc import StaleDataError

from liquorpos.extensions import db
from liquorpos.models import Product
from liquorpos.services import stock_service
from liquorpos.services.errors import (
    BaseProductNotFoundError,
    InsufficientStockError,
    InvalidCartError,
)
from liquorpos.services.stock_service import (
    FamilyReadSet,
    ProductFamily,
    ProductSnapshot,
    StockMovement,
    derive_status,
    group_by_base_sku,
    plan_removal,
    plan_return,
)

from conftest import make_product, reload


def _snapshot(id, sku, base, units, stock, threshold=0, version=1):
    return ProductSnapshot(
        id=id, sku=sku, base_product_sku=base, contained_units=units,
        stock=stock, threshold=threshold, version_id=version,
    )


def _beer_read_set(base_stock=100):
    single = _snapshot(1, "B1", "B1", 1, base_stock, threshold=10)
    six = _snapshot(2, "B6", "B1", 6, base_stock // 6, threshold=2)
    return FamilyReadSet(families={
        "B1": ProductFamily(base_sku="B1", base=single, members=(single, six)),
    })


# =============================================================================
# STATUS
# =============================================================================


class TestDeriveStatus:
    @pytest.mark.parametrize(
        "stock,threshold,expected",
        [
            (0, 10, "Out of Stock"),
            (-3, 0, "Out of Stock"),
            (10, 10, "Low Stock"),
            (1, 10, "Low Stock"),
            (11, 10, "In Stock"),
            (1, 0, "In Stock"),
        ],
    )
    def test_boundaries(self, stock, threshold, expected):
        assert derive_status(stock, threshold) == expected


# =============================================================================
# GROUPING
# =============================================================================


class TestGroupByBaseSku:
    def test_variants_fold_into_base_units(self):
        deltas = group_by_base_sku([
            StockMovement("B1", "B1", 1, 4),
            StockMovement("B6", "B1", 6, 2),
            StockMovement("W1", "W1", 1, 1),
        ])
        assert deltas == {"B1": 16, "W1": 1}

    def test_zero_quantity_rejected(self):
        with pytest.raises(InvalidCartError):
            group_by_base_sku([StockMovement("B1", "B1", 1, 0)])

    def test_missing_contained_units_counts_as_one(self):
        deltas = group_by_base_sku([StockMovement("B1", "B1", None, 3)])
        assert deltas == {"B1": 3}


# =============================================================================
# PLANNING
# =============================================================================


class TestPlanRemoval:
    def test_every_family_member_rewritten(self):
        writes = plan_removal(_beer_read_set(), {"B1": 12})
        by_sku = {w.sku: w for w in writes}

        assert by_sku["B1"].stock == 88
        assert by_sku["B1"].status == "In Stock"
        assert by_sku["B6"].stock == 14
        assert by_sku["B6"].status == "In Stock"
        assert all(w.expected_version == 1 for w in writes)

    def test_member_uses_its_own_threshold(self):
        writes = plan_removal(_beer_read_set(), {"B1": 88})
        by_sku = {w.sku: w for w in writes}

        # B1 threshold is 10
        assert by_sku["B1"].stock == 12
        assert by_sku["B1"].status == "In Stock"
        # B6 threshold is 2
        assert by_sku["B6"].stock == 2
        assert by_sku["B6"].status == "Low Stock"

    def test_exact_depletion_is_allowed(self):
        writes = plan_removal(_beer_read_set(), {"B1": 100})
        assert {w.sku: (w.stock, w.status) for w in writes} == {
            "B1": (0, "Out of Stock"),
            "B6": (0, "Out of Stock"),
        }

    def test_shortage_lists_every_offending_base(self):
        read_set = _beer_read_set(base_stock=5)
        wine = _snapshot(3, "W1", "W1", 1, 2)
        families = dict(read_set.families)
        families["W1"] = ProductFamily(base_sku="W1", base=wine, members=(wine,))

        with pytest.raises(InsufficientStockError) as exc:
            plan_removal(FamilyReadSet(families=families), {"B1": 6, "W1": 3})

        err = exc.value
        assert err.sku == "B1"
        assert err.shortfall == 1
        assert [s["sku"] for s in err.details["items"]] == ["B1", "W1"]
        assert err.details["items"][1] == {
            "sku": "W1", "requested": 3, "available": 2, "shortfall": 1,
        }
        assert str(err) == "Not enough stock for B1. Required: 6, available: 5"

    def test_unknown_family_raises_base_not_found(self):
        with pytest.raises(BaseProductNotFoundError) as exc:
            plan_removal(_beer_read_set(), {"X9": 1})
        assert exc.value.details == {"base_product_sku": "X9"}


class TestPlanReturn:
    def test_return_recomputes_variants(self):
        writes = plan_return(_beer_read_set(base_stock=88), {"B1": 12})
        assert {w.sku: w.stock for w in writes} == {"B1": 100, "B6": 16}

    def test_return_lifts_out_of_stock(self):
        writes = plan_return(_beer_read_set(base_stock=0), {"B1": 6})
        assert {w.sku: w.status for w in writes} == {"B1": "Low Stock", "B6": "Low Stock"}


# =============================================================================
# DATABASE READS AND GUARDED WRITES
# =============================================================================


class TestLoadFamilies:
    def test_reads_whole_family(self, beer, wine):
        read_set = stock_service.load_families(db.session, ["B1"])

        family = read_set.family("B1")
        assert family.base.sku == "B1"
        assert {m.sku for m in family.members} == {"B1", "B6"}
        assert "W1" not in read_set

    def test_variant_without_base_record(self, db_session):
        make_product("X6", "Orphan-SixPack", stock=3, base_product_sku="X1", contained_units=6)

        with pytest.raises(BaseProductNotFoundError) as exc:
            stock_service.load_families(db.session, ["X1"])
        assert exc.value.base_sku == "X1"

    def test_empty_request(self, db_session):
        assert stock_service.load_families(db.session, []).families == {}


class TestApplyStockWrites:
    def test_writes_bump_version(self, beer):
        single, _ = beer
        read_set = stock_service.load_families(db.session, ["B1"])
        writes = plan_removal(read_set, {"B1": 6})

        assert stock_service.apply_stock_writes(db.session, writes) == 2
        db.session.commit()

        fresh = reload(Product, single.id)
        assert fresh.stock == 94
        assert fresh.version_id == read_set.family("B1").base.version_id + 1

    def test_stale_version_rejected(self, beer):
        single, six = beer
        read_set = stock_service.load_families(db.session, ["B1"])
        writes = plan_removal(read_set, {"B1": 6})

        # Another writer commits against the same family.
        fresh = reload(Product, six.id)
        fresh.name = "Beer-SixPack (renamed)"
        db.session.commit()

        with pytest.raises(StaleDataError):
            stock_service.apply_stock_writes(db.session, writes)
        db.session.rollback()

        assert reload(Product, single.id).stock == 100
