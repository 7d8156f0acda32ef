# Overview: Password hashing, user creation and credential checks.

"""
Authentication Service

Passwords are hashed with bcrypt and validated for strength on creation.
Session tokens are handled separately (see session_service.py).

Roles are deliberately flat: `admin` may run every mutation, `user`
may only read.
"""

import re

import bcrypt
from flask import current_app, has_app_context

from ..extensions import db
from ..models import User
from ..models.auth import ROLES, ROLE_USER
from erp.time_utils import utcnow


DEFAULT_BCRYPT_ROUNDS = 12


class PasswordValidationError(Exception):
    """Raised when password doesn't meet strength requirements."""
    pass


class UserExistsError(Exception):
    """Raised when username or email is already taken."""
    pass


def validate_password_strength(password: str) -> None:
    """
    Validate password meets strength requirements.

    Requirements:
    - Minimum 8 characters
    - At least one letter and one digit

    Raises PasswordValidationError if requirements not met.
    """
    if not password or len(password) < 8:
        raise PasswordValidationError("Password must be at least 8 characters long")
    if not re.search(r"[A-Za-z]", password):
        raise PasswordValidationError("Password must contain at least one letter")
    if not re.search(r"\d", password):
        raise PasswordValidationError("Password must contain at least one digit")


def _bcrypt_rounds() -> int:
    if has_app_context():
        return int(current_app.config.get("BCRYPT_ROUNDS", DEFAULT_BCRYPT_ROUNDS))
    return DEFAULT_BCRYPT_ROUNDS


def hash_password(password: str) -> str:
    """Validate strength, then hash with bcrypt (cost from BCRYPT_ROUNDS)."""
    validate_password_strength(password)
    salt = bcrypt.gensalt(rounds=_bcrypt_rounds())
    hashed = bcrypt.hashpw(password.encode("utf-8"), salt)
    return hashed.decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    """Timing-safe bcrypt comparison. Malformed hashes never match."""
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        return False


def create_user(
    username: str,
    password: str,
    *,
    email: str | None = None,
    name: str | None = None,
    role: str = ROLE_USER,
) -> User:
    """
    Create new user with bcrypt password hashing.

    Raises:
        UserExistsError: username or email already taken
        PasswordValidationError: weak password
        ValueError: unknown role
    """
    if role not in ROLES:
        raise ValueError(f"Unknown role {role!r}")

    conditions = [User.username == username]
    if email:
        conditions.append(User.email == email)
    existing = db.session.query(User).filter(db.or_(*conditions)).first()
    if existing:
        raise UserExistsError("Username or email already exists")

    user = User(
        username=username,
        email=email,
        name=name,
        role=role,
        password_hash=hash_password(password),
    )
    db.session.add(user)
    db.session.commit()
    return user


def authenticate(username: str, password: str) -> User | None:
    """
    Authenticate by username (or email) and password.

    Returns the active User on success and stamps last_login_at; None otherwise.
    """
    user = db.session.query(User).filter(
        db.or_(User.username == username, User.email == username),
        User.is_active.is_(True),
    ).first()

    if not user:
        return None

    if verify_password(password, user.password_hash):
        user.last_login_at = utcnow()
        db.session.commit()
        return user

    return None
