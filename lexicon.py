"""Distress phrases the voice trigger watches for.

Order is significant: the matcher returns the first phrase that matches,
so a phrase must never contain an earlier entry as a substring.
"""

from __future__ import annotations

TRIGGER_PHRASES: tuple[str, ...] = (
    "someone is following me",
    "i am being followed",
    "get away from me",
    "leave me alone",
    "stop hurting me",
    "i am in danger",
    "call the police",
    "call 911",
    "i need help",
    "i'm scared",
    "i am scared",
    "help me",
    "save me",
    "let me go",
    "emergency",
)
