# leadbook/models/__init__.py

from .audit import AuditLog
from .base import BaseModel, db
from .lead import Lead, LeadActivity, LeadContact, LeadSource, LeadStatus, normalize_company_name

__all__ = [
    "db",
    "BaseModel",
    "AuditLog",
    "Lead",
    "LeadActivity",
    "LeadContact",
    "LeadSource",
    "LeadStatus",
    "normalize_company_name",
]
