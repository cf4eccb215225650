"""Adapters package - Bridge between the process engine and the relay.

Holds the per-session record channel and the wire message types shared
by the server and the terminal client.
"""
from __future__ import annotations

__all__ = [
    "RecordChannel",
]

from streamrelay.adapters.record_channel import RecordChannel
