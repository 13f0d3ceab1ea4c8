"""
KPI Review Engine
SQLAlchemy extension instance shared by every model module.

Usage:
    from kpi_review.models import db
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
