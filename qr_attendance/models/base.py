"""Base model class with common functionality."""
from datetime import datetime
from enum import Enum
from typing import Dict, Any, Optional
from qr_attendance import db
from qr_attendance.utils.helpers import utcnow


class BaseModel(db.Model):
    """Base model class with common fields and methods."""

    __abstract__ = True

    id = db.Column(db.Integer, primary_key=True)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    def save(self) -> 'BaseModel':
        """Save instance to database."""
        db.session.add(self)
        db.session.commit()
        return self

    def to_dict(self, exclude: list = None) -> Dict[str, Any]:
        """Convert instance to dictionary."""
        exclude = exclude or []
        result = {}

        for column in self.__table__.columns:
            key = column.name
            if key not in exclude:
                value = getattr(self, key)
                if isinstance(value, datetime):
                    value = value.isoformat()
                elif isinstance(value, Enum):
                    value = value.value
                result[key] = value

        return result

    @classmethod
    def get_by_id(cls, id: int) -> Optional['BaseModel']:
        """Get instance by ID."""
        return db.session.get(cls, id)

    def __repr__(self) -> str:
        return f'<{self.__class__.__name__} {self.id}>'
