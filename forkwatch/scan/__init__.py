"""Scan Trigger Gate and the security scan it guarantees."""

from forkwatch.scan.findings import Finding, RiskAssessment, assess
from forkwatch.scan.gate import GateDecision, ScanResult, ScanRunner, ScanTriggerGate, TriggerMode

__all__ = [
    "Finding",
    "GateDecision",
    "RiskAssessment",
    "ScanResult",
    "ScanRunner",
    "ScanTriggerGate",
    "TriggerMode",
    "assess",
]
