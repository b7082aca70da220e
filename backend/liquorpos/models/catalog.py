from __future__ import annotations

from ..extensions import db
from liquorpos.time_utils import to_utc_z


STATUS_IN_STOCK = "In Stock"
STATUS_LOW_STOCK = "Low Stock"
STATUS_OUT_OF_STOCK = "Out of Stock"


class Product(db.Model):
    """
    Product master data, including packaging variants.

    SKU FAMILIES:
    A base product is the smallest sellable unit; its base_product_sku equals
    its own sku and contained_units is 1. A packaging variant (six-pack, case)
    points base_product_sku at the base unit's sku and states how many base
    units one of it holds in contained_units.

    Stock is denominated in the product's own unit. For a fixed base SKU every
    member of the family satisfies:

        stock == floor(base.stock / contained_units)

    stock and status are only written by services.stock_service during sale
    and void transactions (and when a variant is first created).

    LOOKUP PATTERN:
    - SKU lookup: Product.query.filter_by(sku=Y)
    - Family lookup: Product.query.filter_by(base_product_sku=Y)
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("sku", name="uq_products_sku"),
        db.Index("ix_products_base_product_sku", "base_product_sku"),
        db.Index("ix_products_name", "name"),
        db.CheckConstraint("contained_units >= 1", name="ck_products_contained_units"),
        db.CheckConstraint("threshold >= 0", name="ck_products_threshold"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    sku = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    category = db.Column(db.String(64), nullable=True)

    # Authoritative storage in cents (frontend may only format for display)
    price_cents = db.Column(db.Integer, nullable=True)

    # Packaging link: equals sku for a base unit
    base_product_sku = db.Column(db.String(64), nullable=False)
    contained_units = db.Column(db.Integer, nullable=False, default=1)

    stock = db.Column(db.Integer, nullable=False, default=0)
    threshold = db.Column(db.Integer, nullable=False, default=0)
    status = db.Column(db.String(16), nullable=False, default=STATUS_OUT_OF_STOCK)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_base(self) -> bool:
        return self.base_product_sku == self.sku

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} base={self.base_product_sku!r} stock={self.stock}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "price_cents": self.price_cents,
            "base_product_sku": self.base_product_sku,
            "contained_units": self.contained_units,
            "stock": self.stock,
            "threshold": self.threshold,
            "status": self.status,
            "is_active": self.is_active,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
