"""
PermitDesk
Model package — owns the shared Flask-SQLAlchemy handle.

Every model module imports ``db`` from here so that a single metadata
registry backs ``db.create_all()`` and the Alembic migrations.
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
