from sqlalchemy import Column, DateTime, String, Text
from sqlalchemy.sql import func

from zhinao_geo.core.database import Base
from zhinao_geo.models.job import new_id


class ContactInquiry(Base):
    __tablename__ = "contact_inquiries"

    id = Column(String, primary_key=True, default=new_id)
    name = Column(String, nullable=False)
    company = Column(String, nullable=False)
    website = Column(String, nullable=True)
    phone = Column(String, nullable=False)
    message = Column(Text, nullable=True)
    status = Column(String, default="new")
    created_at = Column(DateTime(timezone=True), server_default=func.now())
