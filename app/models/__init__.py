"""
Municipal Innovation Strategy Platform
Database models package.

The shared ``db`` handle is created here and bound to the Flask app in
``create_app``. Model modules import it as ``from app.models import db``.
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
