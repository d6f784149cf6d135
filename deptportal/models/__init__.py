"""
Department Portal
SQLAlchemy extension instance shared by every model module.

Usage:
    from deptportal.models import db
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
