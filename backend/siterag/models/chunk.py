"""Indexed knowledge: crawled page chunks and operator-authored entries."""
from sqlalchemy import Column, Integer, String, DateTime, Text, Index
from pgvector.sqlalchemy import Vector
from datetime import datetime

from siterag.config import get_settings
from siterag.models.base import Base

EMBEDDING_DIMENSION = get_settings().embedding_dimension


class DocumentChunk(Base):
    """One embedded slice of a crawled page."""
    __tablename__ = "document_chunks"

    id = Column(Integer, primary_key=True, index=True)
    company_id = Column(String(64), nullable=False, index=True)
    agent_id = Column(String(64), nullable=False, index=True)

    url = Column(Text, nullable=False)
    title = Column(Text, nullable=True)
    section_title = Column(Text, nullable=True)
    text = Column(Text, nullable=False)
    embedding = Column(Vector(EMBEDDING_DIMENSION), nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index(
            "ix_document_chunks_embedding_hnsw",
            "embedding",
            postgresql_using="hnsw",
            postgresql_with={"m": 16, "ef_construction": 64},
            postgresql_ops={"embedding": "vector_cosine_ops"},
        ),
    )


class CustomKnowledge(Base):
    """Operator-authored Q&A or note, searched alongside crawled chunks."""
    __tablename__ = "custom_knowledge"

    id = Column(Integer, primary_key=True, index=True)
    company_id = Column(String(64), nullable=False, index=True)
    agent_id = Column(String(64), nullable=True, index=True)

    title = Column(String(255), nullable=False)
    content = Column(Text, nullable=False)  # at most 3000 characters
    embedding = Column(Vector(EMBEDDING_DIMENSION), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
