"""Microphone capture and speaker playback."""
