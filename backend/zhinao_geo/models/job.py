import enum
from uuid import uuid4

from sqlalchemy import JSON, Column, DateTime, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from zhinao_geo.core.database import Base


class JobStatus(str, enum.Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


ACTIVE_STATUSES = frozenset({JobStatus.QUEUED.value, JobStatus.PROCESSING.value})
TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED.value, JobStatus.FAILED.value})


def new_id() -> str:
    return str(uuid4())


class ScanJob(Base):
    __tablename__ = "scan_jobs"

    id = Column(String, primary_key=True, default=new_id)
    user_id = Column(String, index=True, nullable=False)
    brand_name = Column(String, nullable=False)
    search_query = Column(Text, nullable=False)
    competitors = Column(JSON, nullable=True)
    selected_models = Column(JSON, nullable=True)
    target_region = Column(String, nullable=True)
    # Written as "queued" here; every later status comes from the workflow engine.
    status = Column(String, index=True, default=JobStatus.QUEUED.value)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    results = relationship(
        "ScanResult",
        back_populates="job",
        cascade="all, delete-orphan",
        order_by="ScanResult.created_at",
    )
