"""Reconciliation engine module."""

from calmirror.sync.engine import ReconciliationEngine
from calmirror.sync.fingerprint import fingerprint
from calmirror.sync.matcher import compile_matcher, parse_rule

__all__ = [
    "ReconciliationEngine",
    "compile_matcher",
    "fingerprint",
    "parse_rule",
]
