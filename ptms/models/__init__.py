"""
Practical Training Management System
SQLAlchemy extension instance shared by every model module.

Usage:
    from ptms.models import db
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
