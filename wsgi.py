"""
WSGI entry point.

Usage:
    gunicorn wsgi:app
    flask --app wsgi seed-admin --email admin@example.com --password ...
"""

from pharmatrack import create_app

app = create_app()
