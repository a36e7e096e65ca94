# Overview: Request decorators for API routes: acting user resolution and error-to-response mapping.

from functools import wraps
from flask import request, jsonify, g, current_app

from .extensions import db
from .models import User
from .validation import ReceivablesError


ACTOR_HEADER = "X-User-Id"
# Keeps the id inside a signed 64-bit integer
ACTOR_ID_MAX_DIGITS = 18


def require_actor(f):
    """
    Resolve the acting user from the X-User-Id header.

    Sets g.current_user to the active User. Authentication is done
    upstream (gateway / session layer); this only identifies who is acting
    so receipts and register postings are attributed.

    Returns 401 if the header is missing, malformed, or names an unknown
    or inactive user.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        raw = (request.headers.get(ACTOR_HEADER) or "").strip()
        if not raw:
            return jsonify({"error": f"{ACTOR_HEADER} header required"}), 401
        if not (raw.isascii() and raw.isdigit()) or len(raw) > ACTOR_ID_MAX_DIGITS:
            return jsonify({"error": f"Invalid {ACTOR_HEADER} header"}), 401

        user = db.session.get(User, int(raw))
        if not user or not user.is_active:
            return jsonify({"error": "Unknown or inactive user"}), 401

        g.current_user = user
        return f(*args, **kwargs)

    return decorated_function


def json_errors(failure_message: str):
    """
    Map service errors to JSON responses.

    ReceivablesError subclasses -> {"error": str(e)} with their status_code.
    Anything else is logged with traceback and returned as a 500.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            try:
                return f(*args, **kwargs)
            except ReceivablesError as e:
                if e.status_code >= 500:
                    current_app.logger.error("%s: %s", failure_message, e)
                return jsonify({"error": str(e)}), e.status_code
            except Exception:
                db.session.rollback()
                current_app.logger.exception(failure_message)
                return jsonify({"error": "Internal server error"}), 500

        return decorated_function
    return decorator
