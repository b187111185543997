"""Governance module for CaseGraph.

Provides the hash-chained, non-blocking audit trail.
"""

from casegraph.governance.audit import AuditEntry, AuditTrail

__all__ = ["AuditEntry", "AuditTrail"]
