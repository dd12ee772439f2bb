from flask import jsonify, request
from werkzeug.exceptions import HTTPException

# ── Domain errors ──────────────────────────────────────────────────


class LibraryError(Exception):
    """A failure the caller can correct. Rendered as a JSON error body."""

    status_code = 400
    kind = "LibraryError"
    default_message = "The request could not be completed."

    def __init__(self, message=None, details=None):
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)

    def to_dict(self):
        body = {"error": self.kind, "message": self.message}
        if self.details:
            body["details"] = self.details
        return body


class NotFound(LibraryError):
    status_code = 404
    kind = "NotFound"
    default_message = "Not found."


class Forbidden(LibraryError):
    status_code = 403
    kind = "Forbidden"
    default_message = "You are not allowed to perform this action."


class ValidationError(LibraryError):
    status_code = 400
    kind = "ValidationError"
    default_message = "Validation error."


class Conflict(LibraryError):
    status_code = 409
    kind = "Conflict"
    default_message = "The request conflicts with existing data."


class StateError(LibraryError):
    status_code = 409
    kind = "StateError"
    default_message = "The request is not valid in the current state."


class AuthenticationFailed(LibraryError):
    status_code = 401
    kind = "Unauthorized"
    default_message = "Invalid email or password."


class AccountLocked(LibraryError):
    status_code = 403
    kind = "AccountLocked"
    default_message = "Account temporarily locked due to repeated failed login attempts. Please try again later."


class InvalidNewOwner(ValidationError):
    kind = "InvalidNewOwner"
    default_message = "New owner must be an existing bookkeeper."


class DuplicateISBN(Conflict):
    kind = "DuplicateISBN"
    default_message = "A book with this ISBN already exists."

    def __init__(self, isbn=None):
        super().__init__(details={"field": "isbn", "value": isbn} if isbn else None)


class NoOpTransfer(Conflict):
    kind = "NoOpTransfer"
    default_message = "Cannot transfer ownership to the current owner."


class NoCopiesAvailable(StateError):
    kind = "NoCopiesAvailable"
    default_message = "No copies available for this book."


class HasActiveLoans(StateError):
    kind = "HasActiveLoans"
    default_message = "Cannot delete a book with active issues."


class InvalidCode(StateError):
    status_code = 400
    kind = "InvalidCode"
    default_message = "Invalid return code."


class CodeExpired(StateError):
    status_code = 400
    kind = "CodeExpired"
    default_message = "The return code has expired."


# ── Handlers ───────────────────────────────────────────────────────

_HTTP_KINDS = {
    400: "BadRequest",
    401: "Unauthorized",
    403: "Forbidden",
    404: "NotFound",
    405: "MethodNotAllowed",
    413: "PayloadTooLarge",
    429: "TooManyRequests",
}


def register_error_handlers(app):
    @app.errorhandler(LibraryError)
    def library_error(e):
        app.logger.info("%s on %s %s: %s", e.kind, request.method, request.path, e.message)
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(HTTPException)
    def http_error(e):
        if e.code == 403:
            app.logger.warning("403 Forbidden: %s", request.path)
        if e.code is not None and e.code >= 500:
            app.logger.error("HTTP %s on %s: %s", e.code, request.path, e.description)
            return jsonify({"error": "InternalError", "message": "Internal server error"}), e.code
        kind = _HTTP_KINDS.get(e.code, "HTTPError")
        return jsonify({"error": kind, "message": e.description}), e.code

    @app.errorhandler(Exception)
    def internal_error(e):
        app.logger.exception("Internal server error: %s", e)
        return jsonify({"error": "InternalError", "message": "Internal server error"}), 500
