# Overview: Service-layer operations for auth; encapsulates business logic and database work.

"""
Authentication, role registry and staff account administration.

SECURITY NOTES:
- Passwords hashed with bcrypt (cost factor from BCRYPT_ROUNDS, default 12)
- Minimum 8 characters required
- Must contain uppercase, lowercase, digit, and special char
- Session tokens managed separately (see session_service.py)
- Roles are read from the users table on every privileged call; the
  Actor carried by a request is never trusted on its own
"""

import re
from dataclasses import dataclass

import bcrypt
from flask import current_app

from ..extensions import db
from ..models import User
from ..models.auth import ROLES, ROLE_SALES
from ..time_utils import utcnow
from ..validation import ConflictError, ValidationError
from .errors import NotAuthenticatedError, NotAuthorizedError


class PasswordValidationError(Exception):
    """Raised when password doesn't meet strength requirements."""
    pass


class UserNotFoundError(LookupError):
    """Raised when a user id does not resolve."""


@dataclass(frozen=True)
class Actor:
    """Verified caller identity handed to the sale and void coordinators."""
    user_id: int
    display_name: str
    role: str

    @classmethod
    def from_user(cls, user: User) -> "Actor":
        return cls(user_id=user.id, display_name=user.display_name, role=user.role)


def validate_password_strength(password: str) -> None:
    """
    Validate password meets strength requirements.

    Requirements:
    - Minimum 8 characters
    - At least one uppercase letter
    - At least one lowercase letter
    - At least one digit
    - At least one special character (!@#$%^&*(),.'":{}|<>)

    Raises PasswordValidationError if requirements not met.
    """
    if len(password) < 8:
        raise PasswordValidationError("Password must be at least 8 characters long")

    if not re.search(r'[A-Z]', password):
        raise PasswordValidationError("Password must contain at least one uppercase letter")

    if not re.search(r'[a-z]', password):
        raise PasswordValidationError("Password must contain at least one lowercase letter")

    if not re.search(r'\d', password):
        raise PasswordValidationError("Password must contain at least one digit")

    if not re.search(r"[!@#$%^&*(),.'\":{}|<>]", password):
        raise PasswordValidationError("Password must contain at least one special character")


def hash_password(password: str) -> str:
    """Validate strength, then hash with bcrypt."""
    validate_password_strength(password)
    rounds = current_app.config.get("BCRYPT_ROUNDS", 12)
    salt = bcrypt.gensalt(rounds=rounds)
    hashed = bcrypt.hashpw(password.encode('utf-8'), salt)
    return hashed.decode('utf-8')  # Store as string in database


def verify_password(password: str, password_hash: str) -> bool:
    """Returns True if password matches hash, False otherwise."""
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        # Malformed hash
        return False


def _validate_role(role: str) -> str:
    if role not in ROLES:
        raise ValidationError(f"role must be one of: {', '.join(ROLES)}")
    return role


def create_user(
    email: str,
    password: str,
    name: str | None = None,
    surname: str | None = None,
    role: str = ROLE_SALES,
    phone_number: str | None = None,
) -> User:
    """
    Create new staff account with bcrypt password hashing.

    Raises:
        ConflictError: If the email is already registered
        ValidationError: If the role is unknown
        PasswordValidationError: If password doesn't meet requirements
    """
    email = email.strip().lower()
    _validate_role(role)

    existing = db.session.query(User).filter_by(email=email).first()
    if existing:
        raise ConflictError("A user with this email address already exists")

    user = User(
        email=email,
        name=name,
        surname=surname,
        role=role,
        phone_number=phone_number,
        password_hash=hash_password(password),
    )

    db.session.add(user)
    db.session.commit()
    return user


def update_user(
    user_id: int,
    name: str | None = None,
    surname: str | None = None,
    role: str | None = None,
) -> User:
    """Update display name parts and role. Role changes apply to the next privileged call."""
    user = db.session.get(User, user_id)
    if not user:
        raise UserNotFoundError("User not found")

    if name is not None:
        user.name = name
    if surname is not None:
        user.surname = surname
    if role is not None:
        user.role = _validate_role(role)

    db.session.commit()
    return user


def delete_user(user_id: int) -> None:
    """Delete account and its sessions. Sales keep their salesperson snapshot."""
    user = db.session.get(User, user_id)
    if not user:
        raise UserNotFoundError("User not found")

    db.session.delete(user)
    db.session.commit()


def authenticate(email: str, password: str) -> User | None:
    """
    Authenticate user with email and password.

    Returns User if credentials valid, None otherwise.
    Updates last_login_at timestamp on successful authentication.
    """
    user = db.session.query(User).filter(
        User.email == email.strip().lower(),
        User.is_active.is_(True),
    ).first()

    if not user:
        return None

    if verify_password(password, user.password_hash):
        user.last_login_at = utcnow()
        db.session.commit()
        return user

    return None


def require_role(actor: Actor | None, role: str) -> User:
    """
    Confirm against the users table that actor holds role.

    The actor's own role field is ignored; only the stored row counts.
    Raises NotAuthenticatedError without an actor and NotAuthorizedError if
    the account is gone, inactive, or holds a different role.
    """
    if actor is None:
        raise NotAuthenticatedError("Authentication required")

    user = (
        db.session.query(User)
        .filter_by(id=actor.user_id)
        .populate_existing()
        .first()
    )
    if not user or not user.is_active:
        raise NotAuthorizedError("Account is not active", details={"user_id": actor.user_id})
    if user.role != role:
        raise NotAuthorizedError(
            f"Requires the {role} role",
            details={"user_id": actor.user_id, "required_role": role},
        )
    return user
