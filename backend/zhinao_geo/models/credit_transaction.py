import enum

from sqlalchemy import Column, DateTime, Integer, String
from sqlalchemy.sql import func

from zhinao_geo.core.database import Base
from zhinao_geo.models.job import new_id


class TransactionType(str, enum.Enum):
    TOP_UP = "top_up"
    DEDUCTION = "deduction"
    REFUND = "refund"
    MONTHLY_GRANT = "monthly_grant"


class CreditTransaction(Base):
    __tablename__ = "credit_transactions"

    id = Column(String, primary_key=True, default=new_id)
    user_id = Column(String, index=True, nullable=False)
    # negative for deductions
    amount = Column(Integer, nullable=False)
    balance_after = Column(Integer, nullable=False)
    transaction_type = Column(String, index=True, nullable=False)
    reference_type = Column(String, nullable=True)
    reference_id = Column(String, nullable=True)
    description = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
