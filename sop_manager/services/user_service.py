"""
User Service — directory CRUD and password login.
"""

import logging
from datetime import datetime, timezone

from email_validator import EmailNotValidError, validate_email

from sop_manager.core.actor import normalize_role
from sop_manager.core.exceptions import AuthenticationRequired, ConflictError, NotFoundError, ValidationError
from sop_manager.models import db
from sop_manager.models.audit import write_audit
from sop_manager.models.user import User
from sop_manager.utils.crypto import hash_password, verify_password

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 8


def _normalize_email(email: str) -> str:
    try:
        return validate_email(email or "", check_deliverability=False).normalized.lower()
    except EmailNotValidError as e:
        raise ValidationError(f"Invalid email: {e}", details={"email": str(e)}) from None


def _check_password(password):
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters",
            details={"password": "too short"},
        )


# ═══════════════════════════════════════════════════════════════
# User CRUD
# ═══════════════════════════════════════════════════════════════
def create_user(
    *,
    email: str,
    name: str,
    password: str,
    role: str = "requester",
    department: str | None = None,
    country: str | None = None,
    created_by: str = "system",
) -> User:
    email = _normalize_email(email)
    if not (name or "").strip():
        raise ValidationError("Name is required", details={"name": "required"})
    _check_password(password)
    role = normalize_role(role)

    if User.query.filter_by(email=email).first():
        raise ConflictError("User", "email", email)

    user = User(
        email=email,
        name=name.strip(),
        password_hash=hash_password(password),
        role=role,
        department=department,
        country=country,
        is_active=True,
    )
    db.session.add(user)
    db.session.flush()
    write_audit(entity_type="user", entity_id=user.id, kind="user.create",
                actor=created_by, payload={"email": email, "role": role})
    db.session.commit()
    logger.info("User created: %s (%s)", email, role)
    return user


def get_user(user_id: str) -> User:
    user = db.session.get(User, user_id)
    if not user:
        raise NotFoundError(resource="User", resource_id=user_id)
    return user


def list_users(*, role=None, department=None, active_only=False) -> list[User]:
    q = User.query
    if role:
        q = q.filter(User.role == normalize_role(role))
    if department:
        q = q.filter(User.department == department)
    if active_only:
        q = q.filter(User.is_active.is_(True))
    return q.order_by(User.name).all()


def update_user(user_id: str, data: dict, updated_by: str = "system") -> User:
    user = get_user(user_id)
    changes = {}
    if "email" in data:
        email = _normalize_email(data["email"])
        clash = User.query.filter(User.email == email, User.id != user.id).first()
        if clash:
            raise ConflictError("User", "email", email)
        data = {**data, "email": email}
    if "role" in data:
        data = {**data, "role": normalize_role(data["role"])}
    for key in ("name", "email", "role", "department", "country", "is_active"):
        if key in data and getattr(user, key) != data[key]:
            changes[key] = {"old": getattr(user, key), "new": data[key]}
            setattr(user, key, data[key])
    if data.get("password"):
        _check_password(data["password"])
        user.password_hash = hash_password(data["password"])
        changes["password"] = {"old": "***", "new": "***"}
    if changes:
        write_audit(entity_type="user", entity_id=user.id, kind="user.update",
                    actor=updated_by, payload=changes)
    db.session.commit()
    return user


def deactivate_user(user_id: str, updated_by: str = "system") -> User:
    return update_user(user_id, {"is_active": False}, updated_by=updated_by)


# ═══════════════════════════════════════════════════════════════
# Login
# ═══════════════════════════════════════════════════════════════
def authenticate(email: str, password: str) -> User:
    """Return the active user for these credentials or raise AuthenticationRequired."""
    user = User.query.filter_by(email=(email or "").strip().lower()).first()
    if not user or not user.is_active or not verify_password(password or "", user.password_hash):
        logger.warning("Failed login for %s", email)
        raise AuthenticationRequired("Invalid email or password")
    user.last_login_at = datetime.now(timezone.utc)
    db.session.commit()
    return user
