# Overview: Request decorators for API routes.

from functools import wraps
from flask import request, jsonify, g

from .extensions import db
from .models import Owner

OWNER_HEADER = "X-Owner-Id"


def require_owner(f):
    """
    Establish tenant context from the X-Owner-Id header.

    MULTI-TENANT: Sets the following Flask g attributes:
    - g.owner: The active Owner
    - g.owner_id: The owner ID every query in the request is scoped to

    Authentication happens in front of this API; this decorator only binds
    the request to an owner. Returns 401 if:
    - No X-Owner-Id header, or a non-integer one
    - Unknown or deactivated owner
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        raw = request.headers.get(OWNER_HEADER, "").strip()

        if not raw.isdigit():
            return jsonify({"error": "Owner context required"}), 401

        owner = db.session.get(Owner, int(raw))
        if owner is None or not owner.is_active:
            return jsonify({"error": "Unknown or inactive owner"}), 401

        g.owner = owner
        g.owner_id = owner.id

        return f(*args, **kwargs)

    return decorated_function
