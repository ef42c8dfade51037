from functools import wraps
from flask_jwt_extended import verify_jwt_in_request, get_jwt_identity
from .. import get_db, get_authz
from ..errors import AuthorizationError
from ..services.policy import load_principal


def current_principal():
    """Resolve the acting principal from the verified JWT identity (None if unknown)."""
    verify_jwt_in_request()
    return load_principal(get_db(), get_jwt_identity())


def require_permission(module: str, action: str):
    """Authorize against the stored permission group and pass the context to the view as ``ctx``."""
    def outer(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            principal = current_principal()
            kwargs['ctx'] = get_authz().authorize(principal, module, action, session=get_db())
            return fn(*args, **kwargs)
        return wrapper
    return outer


def require_principal(fn):
    """Any active, known principal; passes it to the view as ``principal``."""
    @wraps(fn)
    def wrapper(*args, **kwargs):
        principal = current_principal()
        if principal is None or not principal.active:
            raise AuthorizationError('inactive or unknown principal')
        kwargs['principal'] = principal
        return fn(*args, **kwargs)
    return wrapper
