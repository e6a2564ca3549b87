from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, Text

from app.core.database import Base


class DeliveryLog(Base):
    """Append-only record of one delivery attempt."""

    __tablename__ = "delivery_logs"

    id = Column(Integer, primary_key=True, index=True)

    # No FK: logs outlive rule deletion.
    rule_id = Column(Integer, nullable=True)

    order_id = Column(String(64), nullable=False, index=True)
    account_id = Column(String(64), nullable=False)

    delivery_type = Column(String(20), nullable=False)
    content = Column(Text, nullable=False, default="")

    # 'success' / 'failed'
    status = Column(String(20), nullable=False)
    error_message = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
