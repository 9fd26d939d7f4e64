"""
Real-time layer: context codes and the live session broker.
"""

from orderflow.realtime.broker import LiveSession, SessionBroker, get_broker
from orderflow.realtime.context import ContextCode, ContextScope, generate_external_code

__all__ = [
    "ContextCode",
    "ContextScope",
    "LiveSession",
    "SessionBroker",
    "generate_external_code",
    "get_broker",
]
