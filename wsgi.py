"""
WSGI and Flask-Migrate / Alembic entry point.

Usage:
    flask --app wsgi db upgrade
    flask --app wsgi seed-stages
    gunicorn wsgi:app
"""

from jobflow import create_app

app = create_app()
