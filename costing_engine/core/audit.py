"""
Costing Audit Trail
Writes who-did-what rows alongside the ledger change they describe
"""
from typing import Dict, Optional
from sqlalchemy.orm import Session

from costing_engine.models.audit import CostingAuditLog


def log_costing_action(
    db: Session,
    user: Optional[str],
    action: str,
    table: Optional[str] = None,
    key: Optional[str] = None,
    old_values: Optional[Dict] = None,
    new_values: Optional[Dict] = None,
    module: Optional[str] = None
) -> CostingAuditLog:
    """
    Add an audit entry to the current transaction

    The caller commits; the entry is discarded with the change on rollback.
    """
    audit_entry = CostingAuditLog(
        audit_user=user or "SYSTEM",
        audit_action=action,
        audit_table=table,
        audit_key=key,
        audit_old_values=old_values or None,
        audit_new_values=new_values or None,
        audit_module=module
    )
    db.add(audit_entry)
    return audit_entry
