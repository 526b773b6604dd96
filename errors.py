"""Shared error codes and user-facing messages."""

from __future__ import annotations

UNSUPPORTED = "UNSUPPORTED"
PERMISSION_DENIED = "PERMISSION_DENIED"
NO_MICROPHONE = "NO_MICROPHONE"
RESTARTS_EXHAUSTED = "RESTARTS_EXHAUSTED"
SYNTHESIS_FAILED = "SYNTHESIS_FAILED"
NETWORK_ERROR = "NETWORK_ERROR"
AUTH_FAILED = "AUTH_FAILED"
CHAT_FAILED = "CHAT_FAILED"

ERROR_MESSAGES = {
    UNSUPPORTED: "Speech recognition is not supported on this device. You can still type your message.",
    PERMISSION_DENIED: "Microphone access denied. Please allow microphone access to use voice commands.",
    NO_MICROPHONE: "No microphone detected. Please connect a microphone to use voice commands.",
    RESTARTS_EXHAUSTED: "Voice recognition stopped after repeated errors. Please try again.",
    SYNTHESIS_FAILED: "Voice synthesis is unavailable.",
    NETWORK_ERROR: "Network failed, please retry.",
    AUTH_FAILED: "API key is invalid.",
    CHAT_FAILED: "I'm sorry, I couldn't connect to my intelligence service. Please try again later.",
}

LISTENING_MESSAGE = "I'm listening..."
STOPPED_MESSAGE = "Voice recognition stopped."


class SynthesisError(RuntimeError):
    """Raised when an audio synthesis or playback stage fails."""


class ChatError(RuntimeError):
    """Raised when the chat backend cannot produce a reply."""
