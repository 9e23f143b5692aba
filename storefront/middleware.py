"""Middleware for authentication and role checks."""
from functools import wraps
from flask import session, g, current_app
from storefront.database import get_session
from storefront.exceptions import UnauthorizedError, AccessDeniedError
from storefront.models import AppUser


def load_current_user():
    """
    Load current user into g (Flask's per-request global).
    
    Called before each request. Sets g.user when the signed session cookie
    carries the id of an active user.
    """
    g.user = None
    
    user_id = session.get('user_id')
    if not user_id:
        return
    
    try:
        user = get_session().query(AppUser).filter_by(id=user_id, active=True).first()
    except Exception as e:
        current_app.logger.error(f"Error in load_current_user: {e}")
        raise
    
    if user:
        g.user = user
    else:
        # Stale cookie for a deleted or deactivated user
        session.pop('user_id', None)


def require_login(f):
    """Decorator: Require user to be logged in (401 otherwise)."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if g.get('user') is None:
            raise UnauthorizedError()
        return f(*args, **kwargs)
    return decorated_function


def require_role(role):
    """
    Decorator: Require a role claim.
    
    Must be used AFTER require_login. Raises AccessDeniedError (403) when
    the current user lacks the role.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            user = g.get('user')
            if user is None:
                raise UnauthorizedError()
            if getattr(user.role, 'value', user.role) != role:
                current_app.logger.warning(
                    f"User {user.id} denied access to {f.__name__} (requires {role})"
                )
                raise AccessDeniedError(f'{role} role required')
            return f(*args, **kwargs)
        return decorated_function
    return decorator
