"""
Gemini Live - Realtime voice sessions with Gemini models.

Opens a live API session, sends a setup message assembled from the
selected model's capabilities, and streams microphone audio once the
server has acknowledged the setup.
"""

__version__ = "0.1.0"
