# backend/liquorpos/services/products_service.py
"""
Catalog reads and product creation.

Creating a packaging variant checks, at write time, that base_product_sku
names an existing base product, and seeds the variant's stock from the base
so the family invariant holds from the first moment.
"""
from __future__ import annotations

from ..extensions import db
from ..models import Product
from ..validation import ConflictError, ValidationError
from .stock_service import derive_status


def list_products(
    base_product_sku: str | None = None,
    category: str | None = None,
    status: str | None = None,
    page: int | None = None,
    per_page: int | None = None,
) -> dict:
    """
    Product listing with optional filters and pagination.

    Returns:
        Dict with 'items', 'count', and pagination metadata if paginated.
    """
    base_query = db.session.query(Product)
    if base_product_sku:
        base_query = base_query.filter(Product.base_product_sku == base_product_sku)
    if category:
        base_query = base_query.filter(Product.category == category)
    if status:
        base_query = base_query.filter(Product.status == status)
    base_query = base_query.order_by(Product.name.asc(), Product.id.asc())

    # If no pagination requested, return all items
    if page is None:
        products = base_query.all()
        return {
            "items": [p.to_dict() for p in products],
            "count": len(products),
        }

    per_page = min(per_page or 20, 100)  # Default 20, max 100
    page = max(page, 1)

    total = base_query.count()
    total_pages = (total + per_page - 1) // per_page if total > 0 else 1

    products = base_query.offset((page - 1) * per_page).limit(per_page).all()

    return {
        "items": [p.to_dict() for p in products],
        "count": len(products),
        "pagination": {
            "page": page,
            "per_page": per_page,
            "total": total,
            "total_pages": total_pages,
            "has_next": page < total_pages,
            "has_prev": page > 1,
        },
    }


def get_product(product_id: int) -> Product | None:
    return db.session.get(Product, product_id)


def create_product(*, patch: dict) -> Product:
    """
    Create product using a validated patch dict.

    - Without base_product_sku (or equal to sku) the product is a base unit:
      contained_units must be 1 and stock is taken from the patch.
    - Otherwise base_product_sku must name an existing base product and the
      variant's stock is floor(base.stock / contained_units).

    Raises:
        ConflictError: If the SKU already exists
        ValidationError: If the base link is broken
    """
    sku = patch["sku"]
    if db.session.query(Product).filter_by(sku=sku).first():
        raise ConflictError(f"SKU {sku} already exists")

    base_sku = patch.get("base_product_sku") or sku
    contained_units = patch.get("contained_units") or 1
    threshold = patch.get("threshold") or 0

    if base_sku == sku:
        if contained_units != 1:
            raise ValidationError("A base product must have contained_units = 1")
        stock = patch.get("stock") or 0
    else:
        base = db.session.query(Product).filter_by(sku=base_sku).first()
        if base is None or not base.is_base:
            raise ValidationError(f"base_product_sku {base_sku} does not reference a base product")
        stock = base.stock // contained_units

    product = Product(
        sku=sku,
        name=patch["name"],
        description=patch.get("description"),
        category=patch.get("category"),
        price_cents=patch.get("price_cents"),
        base_product_sku=base_sku,
        contained_units=contained_units,
        stock=stock,
        threshold=threshold,
        status=derive_status(stock, threshold),
        is_active=patch.get("is_active", True),
    )
    db.session.add(product)
    db.session.commit()
    return product
