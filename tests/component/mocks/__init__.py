"""
Shared mocks for component tests
"""
from .nats_mock import MockEventBus

__all__ = [
    "MockEventBus",
]
