from sqlalchemy import Column, Date, DateTime, Integer, String
from sqlalchemy.sql import func

from zhinao_geo.core.database import Base


class Profile(Base):
    __tablename__ = "profiles"

    id = Column(String, primary_key=True, index=True)
    email = Column(String, index=True)
    full_name = Column(String, nullable=True)
    credits_balance = Column(Integer, default=0)
    monthly_free_quota = Column(Integer, nullable=True)
    tier_level = Column(String, nullable=True)
    last_reset_date = Column(Date, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
