"""
WSGI / Flask-Migrate entry point.

Usage:
    flask --app wsgi check-history
    flask --app wsgi db migrate -m "description"
    gunicorn wsgi:app
"""

from crm_workflow import create_app

app = create_app()
