"""
Sales Operations Platform
SQLAlchemy extension and model registry.

Every model module imports ``db`` from here; ``create_app`` binds it with
``db.init_app(app)`` and imports the model modules so metadata is complete
before ``db.create_all()`` and Alembic autogenerate run.
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
