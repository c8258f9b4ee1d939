"""
Caller Identity and Permission Decorators
Caller identity is resolved upstream and forwarded in request headers;
these helpers materialise it and enforce tenant ownership and role checks
"""
from functools import wraps
from flask import g, request
from models import UserRole
from utils.errors import Forbidden, InvalidInput


class Caller:
    """Identity of the operator issuing an admin request"""

    def __init__(self, user_id, tenant_id, role=UserRole.OPERATOR):
        self.user_id = user_id
        self.tenant_id = tenant_id
        self.role = role

    @property
    def is_admin(self):
        return self.role == UserRole.ADMIN

    @property
    def can_write(self):
        """Admins and operators may mutate state; viewers are read-only"""
        return self.role in (UserRole.ADMIN, UserRole.OPERATOR)

    def owns(self, tenant_id):
        return tenant_id is not None and tenant_id == self.tenant_id

    def __repr__(self):
        return f'<Caller {self.user_id} tenant:{self.tenant_id} ({self.role.value})>'


def caller_from_headers(headers):
    """Build a Caller from X-User-ID / X-Tenant-ID / X-User-Role"""
    tenant_header = headers.get('X-Tenant-ID')
    if not tenant_header:
        raise Forbidden('Missing caller identity')
    try:
        tenant_id = int(tenant_header)
    except ValueError:
        raise InvalidInput('X-Tenant-ID must be an integer')

    role_value = (headers.get('X-User-Role') or UserRole.VIEWER.value).lower()
    try:
        role = UserRole(role_value)
    except ValueError:
        raise InvalidInput(f'Unknown role: {role_value}')

    return Caller(headers.get('X-User-ID'), tenant_id, role)


def require_caller(f):
    """
    Decorator to resolve the caller identity into g.caller
    Usage: @require_caller
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        g.caller = caller_from_headers(request.headers)
        return f(*args, **kwargs)
    return decorated_function


def ensure_can_write(caller):
    """Raise Forbidden for read-only callers"""
    if not caller.can_write:
        raise Forbidden('Operator or Administrator access required')


def ensure_owns(caller, tenant_id, resource='resource'):
    """Raise Forbidden when the caller does not own the tenant"""
    if not caller.owns(tenant_id):
        raise Forbidden(f'Permission denied for this {resource}')
