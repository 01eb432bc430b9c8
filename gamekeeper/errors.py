"""
gamekeeper - Error types and Flask error handlers
"""
from flask import current_app, jsonify
from werkzeug.exceptions import HTTPException


class GamekeeperError(Exception):
    """Base exception for gamekeeper"""
    status_code = 400

    def __init__(self, message: str, code: str = "GAMEKEEPER_ERROR", details=None):
        self.message = message
        self.code = code
        self.details = details
        super().__init__(message)

    def to_dict(self):
        error = {'code': self.code, 'message': self.message}
        if self.details is not None:
            error['details'] = self.details
        return {'success': False, 'error': error}


class NotFound(GamekeeperError):
    """Unknown game, release, update, folder or library id"""
    status_code = 404

    def __init__(self, resource: str, identifier=None):
        message = f"{resource} '{identifier}' not found" if identifier is not None else f"{resource} not found"
        super().__init__(message, code="NOT_FOUND")


class DuplicateGrab(GamekeeperError):
    """The release is already pending or downloading for this game"""
    status_code = 409

    def __init__(self, game_id, guid):
        super().__init__(
            f"Release '{guid}' is already being grabbed for game {game_id}",
            code="DUPLICATE_GRAB",
        )


class AdapterUnavailable(GamekeeperError):
    """An external system timed out, refused the connection or is not configured"""
    status_code = 502

    def __init__(self, adapter: str, message: str):
        self.adapter = adapter
        super().__init__(f"{adapter}: {message}", code="ADAPTER_UNAVAILABLE")


class AmbiguousMatch(GamekeeperError):
    """Auto-match found zero or several high-confidence candidates"""
    status_code = 409

    def __init__(self, title: str, candidates=None):
        self.candidates = candidates or []
        if self.candidates:
            message = f"'{title}' matched {len(self.candidates)} candidates, choose one manually"
        else:
            message = f"No confident match for '{title}'"
        super().__init__(message, code="AMBIGUOUS_MATCH", details={'candidates': self.candidates})


class InvalidState(GamekeeperError):
    """Operation attempted against a record in an incompatible status"""
    status_code = 409

    def __init__(self, message: str):
        super().__init__(message, code="INVALID_STATE")


class ValidationError(GamekeeperError):
    """Malformed request payload"""
    status_code = 400

    def __init__(self, message: str, details=None):
        super().__init__(message, code="VALIDATION_ERROR", details=details)


def register_error_handlers(app):
    """Register exception handlers with Flask app"""
    from . import db

    @app.errorhandler(GamekeeperError)
    def handle_gamekeeper_error(e):
        db.session.rollback()
        current_app.logger.warning(f"{e.code}: {e.message}")
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(HTTPException)
    def handle_http_exception(e):
        return jsonify({
            'success': False,
            'error': {'code': e.name.upper().replace(' ', '_'), 'message': e.description},
        }), e.code

    @app.errorhandler(Exception)
    def handle_unexpected_exception(e):
        db.session.rollback()
        current_app.logger.error(f"Unhandled exception: {e}", exc_info=True)
        return jsonify({
            'success': False,
            'error': {'code': 'INTERNAL_ERROR', 'message': 'An unexpected error occurred'},
        }), 500
