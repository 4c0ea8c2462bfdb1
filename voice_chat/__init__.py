"""
Voice Chat - Hands-free voice conversation with an AI assistant.

Continuous speech capture with automatic end-of-utterance submission and
spoken playback of assistant replies, coordinated so that listening and
speaking never overlap.
"""

__version__ = "1.0.0"
