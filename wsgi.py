"""
WSGI / Flask-Migrate entry point.

Usage:
    gunicorn wsgi:app
    flask --app wsgi seed-departments
    flask --app wsgi db migrate -m "description"
"""

from civictrack import create_app

app = create_app()
