"""
WSGI / Flask-Migrate entry point.

Usage:
    gunicorn wsgi:app
    flask --app wsgi db migrate -m "description"
    flask --app wsgi db upgrade
    flask --app wsgi create-user --email admin@acme.com --name Admin
"""

from sop_manager import create_app

app = create_app()
