"""
WSGI / Flask-Migrate entry point.

Usage:
    gunicorn wsgi:app
    flask --app wsgi db upgrade
    flask --app wsgi seed-workflow-templates
    flask --app wsgi dispatch-notifications
    flask --app wsgi notification-worker     (dedicated outbox worker process)
"""

from permitdesk import create_app

app = create_app()
