"""Import all models so Base.metadata knows every table."""
from app.models.app_settings import AppSetting
from app.models.article import Article
from app.models.audit_log import AuditLog
from app.models.identification_session import IdentificationSession
from app.models.unlock import UnlockRecord

__all__ = ["AppSetting", "Article", "AuditLog", "IdentificationSession", "UnlockRecord"]
