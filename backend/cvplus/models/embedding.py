from sqlalchemy import Column, Integer, String, DateTime, Text, JSON, Float, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from ..core.database import Base

class CVEmbedding(Base):
    """CV分块向量（用于RAG问答）"""
    __tablename__ = "cv_embeddings"

    id = Column(Integer, primary_key=True, index=True)
    job_id = Column(String(36), ForeignKey("cv_jobs.id", ondelete="CASCADE"), nullable=False, index=True)
    section = Column(String(50), nullable=False, comment="experience, education, skills, achievements")
    chunk_index = Column(Integer, default=0)
    content = Column(Text, nullable=False)
    vector = Column(JSON, nullable=False, comment="embedding 向量")
    tokens = Column(Integer, default=0)
    importance = Column(Float, default=1.0)
    model = Column(String(100))

    job = relationship("CVJob", back_populates="embeddings")

    created_at = Column(DateTime, default=func.now())
