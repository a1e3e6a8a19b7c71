from sqlalchemy import Column, String, DateTime, JSON, PrimaryKeyConstraint
from sqlalchemy.sql import func
from database import Base


# ─────────────────────────────────────────────────────────────
# Document Model
# ─────────────────────────────────────────────────────────────
class Document(Base):
    __tablename__ = "documents"
    __table_args__ = (PrimaryKeyConstraint("collection", "id"),)

    collection = Column(String, nullable=False)
    id = Column(String, nullable=False)
    body = Column(JSON, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
