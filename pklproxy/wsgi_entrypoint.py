"""Entry point module for WSGI servers.

This is used when running the app with uWSGI, gunicorn and the like. You do
not need it when running through pklproxy.server or for local development.
"""

from .app import init_app

app = init_app()
