"""
Security Module

Pre-execution policy checks for externally triggered jobs.
"""

from .gate import SecurityDecision, SecurityGate

__all__ = ["SecurityDecision", "SecurityGate"]
