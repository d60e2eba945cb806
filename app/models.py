"""
SQLAlchemy ORM models for the sql entity-map backend.

For the domain entities stored in these rows, see entities.py.
"""

from sqlalchemy import Column, String, Text

from app.storage import Base


class EntityRecord(Base):
    """
    One stored entity, serialized as a JSON document.

    Table: entities
    Primary Key: (kind, entity_id), so each entity map owns one kind partition
    """
    __tablename__ = "entities"

    kind = Column(String, primary_key=True)
    entity_id = Column(String, primary_key=True, index=True)
    payload = Column(Text, nullable=False)
