"""
Authentication service for user management.

Handles local registration and email/password authentication.
"""
import logging
import re
from typing import Any, Mapping

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from storefront.models import AppUser, UserRole
from storefront.exceptions import ConflictError, UnauthorizedError, ValidationError

logger = logging.getLogger(__name__)

EMAIL_RE = re.compile(r'^[^@\s]+@[^@\s]+\.[^@\s]+$')
MIN_PASSWORD_LENGTH = 8


def _text(value: Any) -> str:
    return value if isinstance(value, str) else ''


def normalize_email(email: str) -> str:
    return email.strip().lower() if isinstance(email, str) else ''


def register_user(session: Session, data: Mapping[str, Any], role: UserRole = UserRole.USER) -> AppUser:
    """
    Create a local user.

    Raises:
        ValidationError: malformed email, short password, oversized fields
        ConflictError: email already registered
    """
    email = normalize_email(data.get('email'))
    password = _text(data.get('password'))
    full_name = _text(data.get('full_name')).strip() or None
    phone = _text(data.get('phone')).strip() or None

    errors = []
    if not EMAIL_RE.match(email):
        errors.append('email: invalid email format')
    if len(password) < MIN_PASSWORD_LENGTH:
        errors.append(f'password: must be at least {MIN_PASSWORD_LENGTH} characters')
    if full_name and len(full_name) > 200:
        errors.append('full_name: must be at most 200 characters')
    if phone and len(phone) > 20:
        errors.append('phone: must be at most 20 characters')
    if errors:
        raise ValidationError(errors)

    if session.query(AppUser.id).filter(AppUser.email == email).first():
        raise ConflictError('Email is already registered')

    try:
        user = AppUser(email=email, full_name=full_name, phone=phone, role=role, active=True)
        user.set_password(password)
        session.add(user)
        session.commit()
    except IntegrityError as e:
        session.rollback()
        logger.warning(f"Duplicate registration for {email}: {e.orig}")
        raise ConflictError('Email is already registered')
    except Exception:
        session.rollback()
        raise

    logger.info(f"User registered: {email} ({role.value})")
    return user


def authenticate(session: Session, email: str, password: str) -> AppUser:
    """Return the active user matching the credentials or raise UnauthorizedError."""
    user = session.query(AppUser).filter(AppUser.email == normalize_email(email)).first()
    if not user or not user.active or not user.check_password(_text(password)):
        logger.warning(f"Failed login attempt for {normalize_email(email)}")
        raise UnauthorizedError('Invalid email or password')
    return user
