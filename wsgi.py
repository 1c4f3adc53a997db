"""
WSGI entry point (gunicorn wsgi:app) and Flask-Migrate target.

Usage:
    flask --app wsgi db migrate -m "description"
    flask --app wsgi db upgrade
    flask --app wsgi revalidate-workflows
"""

from erpforms import create_app

app = create_app()
