"""Testaments — beneficiary key boxes released after owner inactivity."""

from .engine import TestamentEngine
from .monitor import EvaluationReport, InactivityMonitor

__all__ = [
    "TestamentEngine",
    "EvaluationReport",
    "InactivityMonitor",
]
