# Overview: Flask API routes for products operations; parses input and returns JSON responses.

# backend/liquorpos/routes/products.py
"""
Product catalog routes.

SECURITY: All routes require authentication.
- Read operations are open to every role
- Creating products requires the administrator role
"""
from flask import Blueprint, request, jsonify, current_app

from ..decorators import require_auth, require_role
from ..models import Product
from ..models.auth import ROLE_ADMINISTRATOR
from ..services import products_service
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    enforce_rules_product,
    ValidationError,
    ConflictError,
)

PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields={
        "sku", "name", "description", "category", "price_cents",
        "base_product_sku", "contained_units", "stock", "threshold", "is_active",
    },
    required_on_create={"sku", "name"},
)

products_bp = Blueprint("products", __name__, url_prefix="/api/products")


@products_bp.get("")
@require_auth
def list_products():
    """
    List products with optional filters and pagination.

    Query params:
    - base_product_sku: str (optional) - only the given SKU family
    - category: str (optional)
    - status: str (optional) - In Stock / Low Stock / Out of Stock
    - page: int (optional) - page number (1-indexed). If omitted, returns all items.
    - per_page: int (optional) - items per page (default 20, max 100)
    """
    result = products_service.list_products(
        base_product_sku=request.args.get("base_product_sku"),
        category=request.args.get("category"),
        status=request.args.get("status"),
        page=request.args.get("page", type=int),
        per_page=request.args.get("per_page", type=int),
    )
    return jsonify(result), 200


@products_bp.get("/<int:product_id>")
@require_auth
def get_product(product_id: int):
    product = products_service.get_product(product_id)
    if not product:
        return jsonify({"error": "Product not found"}), 404
    return jsonify({"product": product.to_dict()}), 200


@products_bp.post("")
@require_auth
@require_role(ROLE_ADMINISTRATOR)
def create_product():
    """
    Create a base product or packaging variant.

    Variants must reference an existing base product; their stock is derived
    from the base and any supplied stock is ignored.
    """
    try:
        patch = validate_payload(
            model=Product,
            payload=request.get_json(silent=True),
            policy=PRODUCT_POLICY,
            partial=False,
        )
        enforce_rules_product(patch)
        product = products_service.create_product(patch=patch)
        return jsonify({"product": product.to_dict()}), 201

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except Exception:
        current_app.logger.exception("Failed to create product")
        return jsonify({"error": "Internal server error"}), 500
