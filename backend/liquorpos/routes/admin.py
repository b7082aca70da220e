# Overview: Flask API routes for admin operations; parses input and returns JSON responses.

# backend/liquorpos/routes/admin.py
"""
Staff account administration.

Requires: administrator role on every route. Voiding sales lives in
routes/sales.py under the same role check.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_auth, require_role
from ..extensions import db
from ..models import User
from ..models.auth import ROLE_ADMINISTRATOR, ROLE_SALES
from ..services import auth_service
from ..services.auth_service import PasswordValidationError, UserNotFoundError
from ..validation import ValidationError, ConflictError


admin_bp = Blueprint("admin", __name__, url_prefix="/api/admin")


@admin_bp.get("/users")
@require_auth
@require_role(ROLE_ADMINISTRATOR)
def list_users():
    users = db.session.query(User).order_by(User.email.asc()).all()
    return jsonify({"users": [u.to_dict() for u in users], "count": len(users)}), 200


@admin_bp.post("/users")
@require_auth
@require_role(ROLE_ADMINISTRATOR)
def create_user():
    """
    Create a staff account.

    Body: {email, password, name?, surname?, role?, phone_number?}
    """
    data = request.get_json(silent=True) or {}
    email = data.get("email")
    password = data.get("password")
    if not email or not password:
        return jsonify({"error": "email and password required"}), 400

    try:
        user = auth_service.create_user(
            email=email,
            password=password,
            name=data.get("name"),
            surname=data.get("surname"),
            role=data.get("role") or ROLE_SALES,
            phone_number=data.get("phone_number"),
        )
        current_app.logger.info("User %s created by %s", user.id, g.current_user.id)
        return jsonify({"user": user.to_dict()}), 201

    except (PasswordValidationError, ValidationError) as e:
        return jsonify({"error": str(e)}), 400
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except Exception:
        current_app.logger.exception("Failed to create user")
        return jsonify({"error": "Internal server error"}), 500


@admin_bp.patch("/users/<int:user_id>")
@require_auth
@require_role(ROLE_ADMINISTRATOR)
def update_user(user_id: int):
    """Body: {name?, surname?, role?}"""
    data = request.get_json(silent=True) or {}
    try:
        user = auth_service.update_user(
            user_id,
            name=data.get("name"),
            surname=data.get("surname"),
            role=data.get("role"),
        )
        return jsonify({"user": user.to_dict()}), 200

    except UserNotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400


@admin_bp.delete("/users/<int:user_id>")
@require_auth
@require_role(ROLE_ADMINISTRATOR)
def delete_user(user_id: int):
    if user_id == g.current_user.id:
        return jsonify({"error": "Cannot delete your own account"}), 400

    try:
        auth_service.delete_user(user_id)
        current_app.logger.info("User %s deleted by %s", user_id, g.current_user.id)
        return jsonify({"message": "User deleted"}), 200

    except UserNotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to delete user")
        return jsonify({"error": "An error occurred while deleting the user"}), 500
