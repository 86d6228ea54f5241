"""Render errors as plain text responses.

Callers of the proxy are package managers and shell tools; a short,
human readable message is all they can use.
"""
from flask import Flask, Response
from werkzeug.exceptions import HTTPException, default_exceptions


class ApiErrorHandler:
    """Handler to send plain text responses for errors."""

    def __init__(self, app: Flask | None = None) -> None:
        if app:
            self.init_app(app)

    def init_app(self, app: Flask) -> None:
        for code in default_exceptions:
            app.errorhandler(code)(self.error_as_text)

    @classmethod
    def error_as_text(cls, ex: Exception) -> Response:
        """Handle errors by returning a text/plain response."""
        if isinstance(ex, HTTPException):
            code = ex.code or 500
            message = ex.description or ex.name
        else:
            code = 500
            message = str(ex)

        return Response(f"{message}\n", status=code, mimetype="text/plain")
