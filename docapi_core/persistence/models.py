"""
docapi database models
"""

import time
from typing import Any, Dict

from sqlalchemy import Column, Float, Integer, JSON, String, UniqueConstraint

from .database import Base


class DocumentRecord(Base):
    __tablename__ = "documents"

    pk = Column(Integer, nullable=False, primary_key=True, autoincrement=True, unique=True)
    collection = Column(String(255), nullable=False, index=True)
    id = Column(String(64), nullable=False)
    content = Column(JSON, nullable=False)
    created = Column(Float, nullable=False, default=time.time)
    modified = Column(Float, nullable=False, default=time.time, onupdate=time.time)

    __table_args__ = (
        UniqueConstraint("collection", "id"),
    )

    @property
    def document(self) -> Dict[str, Any]:
        return {**self.content, "_id": self.id}

    def __repr__(self) -> str:
        return f"DocumentRecord(collection={self.collection!r}, id={self.id!r})"
