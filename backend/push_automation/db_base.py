"""
Declarative base shared by every model.

Import Base from here (never create another declarative base) so that
Base.metadata.create_all() sees all tables.
"""

from sqlalchemy.orm import declarative_base

Base = declarative_base()
