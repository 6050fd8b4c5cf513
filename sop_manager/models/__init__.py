"""
SOP Document Manager
Shared SQLAlchemy handle.

All model modules import ``db`` from here; ``create_app`` binds it to the app.
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
