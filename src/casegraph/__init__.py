"""CaseGraph: association graph, case consolidation and pattern detection."""

__version__ = "0.1.0"
