# Overview: Route decorators translating core errors into JSON responses.

from functools import wraps

from flask import current_app, jsonify

from .errors import InvariantViolation, PosError


def error_response(exc: PosError):
    return jsonify(exc.to_dict()), exc.status_code


def handle_pos_errors(action: str):
    """
    Map PosError subclasses to their status codes.

    InvariantViolation is a fatal bug, not bad input: it is logged with its
    state and answered with a generic 500, as is anything unexpected.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            try:
                return f(*args, **kwargs)
            except InvariantViolation as e:
                current_app.logger.critical("Invariant violation while trying to %s: %s %r", action, e, e.details)
                return jsonify({"error": "Internal consistency error"}), 500
            except PosError as e:
                return error_response(e)
            except Exception:
                current_app.logger.exception(f"Failed to {action}")
                return jsonify({"error": "Internal server error"}), 500

        return decorated_function

    return decorator
