from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from zhinao_geo.core.database import Base
from zhinao_geo.models.job import new_id


class ScanResult(Base):
    __tablename__ = "scan_results"

    id = Column(String, primary_key=True, default=new_id)
    job_id = Column(String, ForeignKey("scan_jobs.id", ondelete="CASCADE"), index=True, nullable=False)
    model_name = Column(String, nullable=False)
    avs_score = Column(Integer, nullable=True)
    spi_score = Column(Integer, nullable=True)
    sentiment_score = Column(Integer, nullable=True)
    # null means the brand was not ranked in the answer
    rank_position = Column(Integer, nullable=True)
    is_visible = Column(Boolean, nullable=True)
    citations = Column(JSON, nullable=True)
    competitors_mentioned = Column(Text, nullable=True)
    raw_response_text = Column(Text, nullable=True)
    diag_attribution_report = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    job = relationship("ScanJob", back_populates="results")
