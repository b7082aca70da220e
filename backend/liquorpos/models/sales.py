from __future__ import annotations

from ..extensions import db
from liquorpos.time_utils import to_utc_z


SALE_COMPLETED = "completed"
SALE_VOIDED = "voided"

PAYMENT_METHODS = ("cash", "card")


class Sale(db.Model):
    """
    Completed sale with a frozen financial snapshot.

    Totals are captured at sale time and never recomputed. The only
    transition is completed -> voided, after which the row is terminal.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.Index("ix_sales_status_created", "status", "created_at"),
        db.CheckConstraint("total_cents = subtotal_cents + tax_cents", name="ck_sales_total"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Financial snapshot (all amounts in cents)
    subtotal_cents = db.Column(db.Integer, nullable=False)
    tax_cents = db.Column(db.Integer, nullable=False)
    total_cents = db.Column(db.Integer, nullable=False)
    amount_paid_cents = db.Column(db.Integer, nullable=False)
    change_due_cents = db.Column(db.Integer, nullable=False, default=0)
    payment_method = db.Column(db.String(16), nullable=False)

    # Salesperson snapshot; users may be deleted later
    salesperson_id = db.Column(db.Integer, nullable=False, index=True)
    salesperson_name = db.Column(db.String(255), nullable=False)

    status = db.Column(db.String(16), nullable=False, default=SALE_COMPLETED, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False)

    # Void audit trail
    voided_at = db.Column(db.DateTime(timezone=True), nullable=True)
    voided_by_user_id = db.Column(db.Integer, nullable=True)
    voided_by_name = db.Column(db.String(255), nullable=True)
    void_reason = db.Column(db.String(255), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    items = db.relationship(
        "SaleItem",
        backref="sale",
        lazy=True,
        order_by="SaleItem.id",
    )
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_voided(self) -> bool:
        return self.status == SALE_VOIDED

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "subtotal_cents": self.subtotal_cents,
            "tax_cents": self.tax_cents,
            "total_cents": self.total_cents,
            "amount_paid_cents": self.amount_paid_cents,
            "change_due_cents": self.change_due_cents,
            "payment_method": self.payment_method,
            "salesperson_id": self.salesperson_id,
            "salesperson_name": self.salesperson_name,
            "status": self.status,
            "created_at": to_utc_z(self.created_at),
            "voided_at": to_utc_z(self.voided_at) if self.voided_at else None,
            "voided_by": (
                {"user_id": self.voided_by_user_id, "name": self.voided_by_name}
                if self.voided_by_user_id is not None else None
            ),
            "void_reason": self.void_reason,
            "version_id": self.version_id,
        }


class SaleItem(db.Model):
    """
    Line item on a sale. Read-only after creation.

    base_product_sku and contained_units are copied from the product when the
    sale is made, so a void returns exactly the base units that were removed.
    """
    __tablename__ = "sale_items"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_sale_items_quantity"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, nullable=False, index=True)

    product_name = db.Column(db.String(255), nullable=False)
    product_sku = db.Column(db.String(64), nullable=False)
    base_product_sku = db.Column(db.String(64), nullable=False)
    contained_units = db.Column(db.Integer, nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    price_cents = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "product_sku": self.product_sku,
            "base_product_sku": self.base_product_sku,
            "contained_units": self.contained_units,
            "quantity": self.quantity,
            "price_cents": self.price_cents,
            "line_total_cents": self.line_total_cents,
            "created_at": to_utc_z(self.created_at),
        }
