"""
Cross-cutting infrastructure services.
"""

from questledger.core.infra.audit_logger import AuditLogger, AuditMetrics

__all__ = ["AuditLogger", "AuditMetrics"]
