# Overview: Stock reconciliation across base products and their packaging variants.

"""
Stock Reconciliation Engine

Stock for a base SKU lives on the base product. Every packaging variant
linked to it through base_product_sku carries a derived stock:

    variant.stock == floor(base.stock / variant.contained_units)

A sale or void is reconciled in two strictly separated phases:

1. READ:  load_families() snapshots every product in each affected family
          (including the version_id it was read at) into a FamilyReadSet.
2. WRITE: plan_removal()/plan_return() turn the read set plus base-unit
          deltas into StockWrite rows without touching the session, and
          apply_stock_writes() issues them, each guarded by the version
          from step 1.

Nothing can be written before the read set exists, and a guard mismatch
(someone else committed against the same family) raises StaleDataError so
services.concurrency re-runs the whole transaction from fresh reads.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Mapping

from sqlalchemy import or_, update
from sqlalchemy.orm.exc import StaleDataError

from ..models import Product
from ..models.catalog import STATUS_IN_STOCK, STATUS_LOW_STOCK, STATUS_OUT_OF_STOCK
from .errors import BaseProductNotFoundError, InvalidCartError, InsufficientStockError


def derive_status(stock: int, threshold: int) -> str:
    """Three-way status rule; depends on nothing but stock and threshold."""
    if stock <= 0:
        return STATUS_OUT_OF_STOCK
    if stock <= threshold:
        return STATUS_LOW_STOCK
    return STATUS_IN_STOCK


def resolve_base_sku(product) -> str:
    return product.base_product_sku or product.sku


def base_units(contained_units: int | None, quantity: int) -> int:
    return (contained_units or 1) * quantity


@dataclass(frozen=True)
class StockMovement:
    """Units of one product leaving (sale) or re-entering (void) stock."""
    sku: str
    base_product_sku: str
    contained_units: int
    quantity: int

    @classmethod
    def for_product(cls, product, quantity: int) -> "StockMovement":
        return cls(
            sku=product.sku,
            base_product_sku=resolve_base_sku(product),
            contained_units=product.contained_units or 1,
            quantity=quantity,
        )


def group_by_base_sku(movements: Iterable[StockMovement]) -> dict[str, int]:
    """Accumulate base-unit deltas per base SKU."""
    deltas: dict[str, int] = {}
    for movement in movements:
        if movement.quantity <= 0:
            raise InvalidCartError(
                f"Quantity for {movement.sku} must be positive",
                details={"sku": movement.sku, "quantity": movement.quantity},
            )
        units = base_units(movement.contained_units, movement.quantity)
        deltas[movement.base_product_sku] = deltas.get(movement.base_product_sku, 0) + units
    return deltas


# =============================================================================
# READ PHASE
# =============================================================================

@dataclass(frozen=True)
class ProductSnapshot:
    id: int
    sku: str
    base_product_sku: str
    contained_units: int
    stock: int
    threshold: int
    version_id: int

    @classmethod
    def from_model(cls, product: Product) -> "ProductSnapshot":
        return cls(
            id=product.id,
            sku=product.sku,
            base_product_sku=resolve_base_sku(product),
            contained_units=product.contained_units or 1,
            stock=product.stock or 0,
            threshold=product.threshold or 0,
            version_id=product.version_id,
        )


@dataclass(frozen=True)
class ProductFamily:
    """A base product and every product denominated in it (base included)."""
    base_sku: str
    base: ProductSnapshot
    members: tuple[ProductSnapshot, ...]


@dataclass(frozen=True)
class FamilyReadSet:
    families: Mapping[str, ProductFamily]

    def family(self, base_sku: str) -> ProductFamily:
        try:
            return self.families[base_sku]
        except KeyError:
            raise BaseProductNotFoundError(base_sku) from None

    def __contains__(self, base_sku: str) -> bool:
        return base_sku in self.families


def load_families(session, base_skus: Iterable[str]) -> FamilyReadSet:
    """
    Read every product in the families of the given base SKUs.

    Raises BaseProductNotFoundError when a base SKU has no product whose own
    sku equals its base_product_sku.
    """
    skus = sorted(set(base_skus))
    if not skus:
        return FamilyReadSet(families={})

    rows = (
        session.query(Product)
        .filter(or_(Product.base_product_sku.in_(skus), Product.sku.in_(skus)))
        .order_by(Product.id)
        .populate_existing()
        .all()
    )

    members_by_base: dict[str, list[ProductSnapshot]] = {sku: [] for sku in skus}
    for product in rows:
        snapshot = ProductSnapshot.from_model(product)
        if snapshot.base_product_sku in members_by_base:
            members_by_base[snapshot.base_product_sku].append(snapshot)

    families = {}
    for base_sku in skus:
        members = members_by_base[base_sku]
        base = next((m for m in members if m.sku == base_sku), None)
        if base is None:
            raise BaseProductNotFoundError(base_sku)
        families[base_sku] = ProductFamily(base_sku=base_sku, base=base, members=tuple(members))

    return FamilyReadSet(families=families)


# =============================================================================
# WRITE PHASE
# =============================================================================

@dataclass(frozen=True)
class StockWrite:
    product_id: int
    sku: str
    expected_version: int
    stock: int
    status: str


def family_writes(family: ProductFamily, new_base_stock: int) -> list[StockWrite]:
    writes = []
    for member in family.members:
        stock = new_base_stock // member.contained_units
        writes.append(StockWrite(
            product_id=member.id,
            sku=member.sku,
            expected_version=member.version_id,
            stock=stock,
            status=derive_status(stock, member.threshold),
        ))
    return writes


def plan_removal(read_set: FamilyReadSet, deltas: Mapping[str, int]) -> list[StockWrite]:
    """
    Plan the writes for units leaving stock.

    Raises InsufficientStockError, listing every short base SKU, if any base
    would go negative. Nothing is written either way.
    """
    writes: list[StockWrite] = []
    shortages = []
    for base_sku in sorted(deltas):
        family = read_set.family(base_sku)
        requested = deltas[base_sku]
        available = family.base.stock
        new_base_stock = available - requested
        if new_base_stock < 0:
            shortages.append({
                "sku": base_sku,
                "requested": requested,
                "available": available,
                "shortfall": -new_base_stock,
            })
            continue
        writes.extend(family_writes(family, new_base_stock))

    if shortages:
        raise InsufficientStockError(shortages)
    return writes


def plan_return(read_set: FamilyReadSet, deltas: Mapping[str, int]) -> list[StockWrite]:
    """Plan the writes for units coming back into stock. Never fails on quantity."""
    writes: list[StockWrite] = []
    for base_sku in sorted(deltas):
        family = read_set.family(base_sku)
        writes.extend(family_writes(family, family.base.stock + deltas[base_sku]))
    return writes


def apply_stock_writes(session, writes: Iterable[StockWrite]) -> int:
    """
    Issue planned stock writes, each conditional on the version it was read at.

    Raises StaleDataError if any product changed after the read phase.
    """
    count = 0
    for write in writes:
        result = session.execute(
            update(Product)
            .where(Product.id == write.product_id, Product.version_id == write.expected_version)
            .values(
                stock=write.stock,
                status=write.status,
                version_id=write.expected_version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise StaleDataError(
                f"Product {write.sku} changed since it was read "
                f"(expected version {write.expected_version})"
            )
        count += 1
    return count
