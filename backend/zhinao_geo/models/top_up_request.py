from sqlalchemy import Column, DateTime, Integer, String
from sqlalchemy.sql import func

from zhinao_geo.core.database import Base
from zhinao_geo.models.job import new_id


class TopUpRequest(Base):
    __tablename__ = "top_up_requests"

    id = Column(String, primary_key=True, default=new_id)
    user_id = Column(String, index=True, nullable=False)
    amount_cny = Column(Integer, nullable=False)
    credits_requested = Column(Integer, nullable=False)
    status = Column(String, index=True, default="pending")
    notes = Column(String, nullable=True)
    transaction_id = Column(String, nullable=True)
    processed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
