"""
Audit Trail Model
Who changed which costing record, and how
"""
from sqlalchemy import Column, String, Integer, DateTime, JSON
from sqlalchemy.sql import func

from costing_engine.core.database import Base


class CostingAuditLog(Base):
    """Audit trail for ledger and allocation changes"""
    __tablename__ = "costing_audit_log"

    audit_id = Column(Integer, primary_key=True, autoincrement=True)
    audit_timestamp = Column(DateTime, server_default=func.current_timestamp(), index=True)
    audit_user = Column(String(30), nullable=False, index=True)
    audit_action = Column(String(40), nullable=False, index=True)  # RECEIVE_BATCH, ALLOCATE_PO_COSTS, etc
    audit_table = Column(String(50), index=True)
    audit_key = Column(String(100))
    audit_old_values = Column(JSON)
    audit_new_values = Column(JSON)
    audit_module = Column(String(10))  # LEDGER, LANDED, VALUATION
