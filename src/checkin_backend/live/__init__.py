"""
Live Query Module for the Check-in Backend
===========================================
Subscriptions that push record changes to viewers instead of being polled.
"""

from .query_router import Delta, DeltaKind, LiveQueryRouter, Subscription, PUBLICATIONS
from .ws_session import LiveSession, delta_frame

__all__ = [
    'Delta',
    'DeltaKind',
    'LiveQueryRouter',
    'Subscription',
    'PUBLICATIONS',
    'LiveSession',
    'delta_frame'
]
