"""
Institutional Reference Portal
Model package — exposes the shared Flask-SQLAlchemy handle.

Every model module imports ``db`` from here so that a single metadata
object backs ``db.create_all()`` and Alembic autogenerate.
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
