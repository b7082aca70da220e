# Overview: Flask API routes for sales operations; parses input and returns JSON responses.

# backend/liquorpos/routes/sales.py
"""Sales API routes: checkout, history and void."""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_auth, require_role
from ..models.auth import ROLE_ADMINISTRATOR
from ..models.sales import SALE_COMPLETED, SALE_VOIDED
from ..services import sales_service
from ..services.errors import SaleError
from ..services.sales_service import CartLine, PaymentDetails
from ..validation import ValidationError, coerce_int, coerce_rate


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


def _sale_payload(sale) -> dict:
    return {
        "sale": sale.to_dict(),
        "items": [item.to_dict() for item in sale.items],
    }


def _parse_cart(data: dict) -> list[CartLine]:
    items = data.get("items")
    if not isinstance(items, list):
        raise ValidationError("items must be a list")

    cart = []
    for index, item in enumerate(items):
        if not isinstance(item, dict):
            raise ValidationError(f"items[{index}] must be an object")
        if item.get("product_id") is None or item.get("quantity") is None:
            raise ValidationError(f"items[{index}] requires product_id and quantity")
        price = item.get("price_cents")
        cart.append(CartLine(
            product_id=coerce_int(item["product_id"], f"items[{index}].product_id"),
            quantity=coerce_int(item["quantity"], f"items[{index}].quantity"),
            price_cents=coerce_int(price, f"items[{index}].price_cents") if price is not None else None,
        ))
    return cart


def _parse_payment(data: dict) -> PaymentDetails:
    payment = data.get("payment") or {}
    if not isinstance(payment, dict):
        raise ValidationError("payment must be an object")

    method = payment.get("method")
    if not method:
        raise ValidationError("payment.method required")

    amount = payment.get("amount_paid_cents")
    rate = payment.get("tax_rate")
    return PaymentDetails(
        method=str(method).strip().lower(),
        amount_paid_cents=coerce_int(amount, "payment.amount_paid_cents") if amount is not None else None,
        tax_rate=coerce_rate(rate, "payment.tax_rate") if rate is not None else None,
    )


@sales_bp.post("")
@require_auth
def complete_sale_route():
    """
    Complete a sale: record it with its items and remove the units from stock.

    Body:
        items: [{product_id, quantity, price_cents?}]
        payment: {method: cash|card, amount_paid_cents?, tax_rate?}
    """
    try:
        data = request.get_json(silent=True) or {}
        cart = _parse_cart(data)
        payment = _parse_payment(data)

        sale = sales_service.complete_sale(cart, payment, g.actor)

        return jsonify(_sale_payload(sale)), 201

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except SaleError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to complete sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("")
@require_auth
def list_sales_route():
    status = request.args.get("status")
    if status and status not in (SALE_COMPLETED, SALE_VOIDED):
        return jsonify({"error": f"status must be {SALE_COMPLETED} or {SALE_VOIDED}"}), 400

    try:
        limit = coerce_int(request.args.get("limit", "50"), "limit")
        offset = coerce_int(request.args.get("offset", "0"), "offset")
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    sales = sales_service.list_sales(status=status, limit=limit, offset=offset)
    return jsonify({
        "items": [sale.to_dict() for sale in sales],
        "count": len(sales),
    }), 200


@sales_bp.get("/<int:sale_id>")
@require_auth
def get_sale_route(sale_id: int):
    """Get sale with items."""
    sale = sales_service.get_sale(sale_id)
    if not sale:
        return jsonify({"error": "Sale not found"}), 404

    return jsonify(_sale_payload(sale)), 200


@sales_bp.post("/<int:sale_id>/void")
@require_auth
@require_role(ROLE_ADMINISTRATOR)
def void_sale_route(sale_id: int):
    """
    Void a completed sale and return its units to stock.

    Requires: administrator role
    """
    try:
        data = request.get_json(silent=True) or {}
        reason = data.get("reason")
        if reason is not None:
            reason = str(reason).strip()[:255] or None

        sale = sales_service.void_sale(sale_id, g.actor, reason=reason)

        return jsonify({"ok": True, "sale": sale.to_dict()}), 200

    except SaleError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to void sale")
        return jsonify({"error": "Internal server error"}), 500
