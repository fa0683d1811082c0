from sqlalchemy import JSON, Column, DateTime, Float, ForeignKey, Integer, String, Text
from sqlalchemy.sql import func

from zhinao_geo.core.database import Base
from zhinao_geo.models.job import JobStatus, new_id


class DiagnosisReport(Base):
    __tablename__ = "diagnosis_reports"

    id = Column(String, primary_key=True, default=new_id)
    scan_result_id = Column(String, ForeignKey("scan_results.id", ondelete="CASCADE"), index=True, nullable=False)
    job_id = Column(String, index=True, nullable=True)
    status = Column(String, index=True, default=JobStatus.QUEUED.value)
    industry = Column(String, nullable=True)
    diagnostic_model = Column(String, nullable=True)
    root_cause_analysis = Column(Text, nullable=True)
    missing_geo_pillars = Column(Text, nullable=True)
    optimization_suggestions = Column(Text, nullable=True)
    reasoning_trace = Column(Text, nullable=True)
    citations = Column(Text, nullable=True)
    citation_authority_audit = Column(JSON, nullable=True)
    faithfulness_score = Column(Float, nullable=True)
    tokens_used = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
