"""Domain and certificate state machine."""

from hostgate.lifecycle.factory import build_lifecycle, create_store
from hostgate.lifecycle.machine import DomainLifecycle, InvariantViolation
from hostgate.lifecycle.transitions import InvalidTransition

__all__ = [
    "DomainLifecycle",
    "InvalidTransition",
    "InvariantViolation",
    "build_lifecycle",
    "create_store",
]
