from sqlalchemy import JSON, Column, DateTime, ForeignKey, String, Text
from sqlalchemy.sql import func

from zhinao_geo.core.database import Base
from zhinao_geo.models.job import JobStatus, new_id


class SimulationResult(Base):
    __tablename__ = "simulation_results"

    id = Column(String, primary_key=True, default=new_id)
    diagnosis_id = Column(String, ForeignKey("diagnosis_reports.id", ondelete="CASCADE"), index=True, nullable=False)
    job_id = Column(String, index=True, nullable=True)
    applied_strategy_id = Column(String, nullable=False)
    status = Column(String, index=True, default=JobStatus.QUEUED.value)
    optimized_content_snippet = Column(Text, nullable=True)
    predicted_rank_change = Column(Text, nullable=True)
    improvement_analysis = Column(Text, nullable=True)
    strategies_used = Column(JSON, nullable=True)
    model_outputs = Column(JSON, nullable=True)
    si_scores = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
