# Overview: Request decorators for API routes.

from functools import wraps
from flask import request, jsonify, g

from .errors import StorefrontError
from .services import tenant_service


def require_tenant(f):
    """
    Establish tenant context from the X-Tenant-ID header.

    MULTI-TENANT: Sets the following Flask g attributes:
    - g.tenant_id: The resolved tenant's id - REQUIRED by every storefront route
    - g.tenant: The Tenant row

    Returns 400 when the header is missing and 404 when the tenant is unknown
    or inactive.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        try:
            tenant = tenant_service.resolve_tenant(request.headers.get("X-Tenant-ID"))
        except StorefrontError as e:
            return jsonify(e.to_dict()), e.status_code

        g.tenant = tenant
        g.tenant_id = tenant.id

        return f(*args, **kwargs)

    return decorated_function
