"""
Corporate CRM Workflow
Model package: shared SQLAlchemy instance.

Every model module imports ``db`` from here so that a single metadata
object backs ``db.create_all()`` and Flask-Migrate.
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
