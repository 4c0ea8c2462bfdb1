"""Setup script for the voice chat system."""

from setuptools import setup, find_packages

setup(
    name="voice-chat",
    version="1.0.0",
    description="Hands-free voice conversation with an AI assistant",
    author="Your Name",
    packages=find_packages(include=["voice_chat", "voice_chat.*", "mocks", "mocks.*"]),
    python_requires=">=3.11",
    install_requires=[
        "python-dotenv>=1.0.0",
        "google-generativeai>=0.3.0",
        "elevenlabs>=2.0.0",
        "pygame>=2.5.0",
        "structlog>=23.0.0",
        "click>=8.0.0",
        "numpy>=1.24.0",
        "sounddevice>=0.4.6",
        "soundfile>=0.12.0",
        "webrtcvad-wheels>=2.0.11",
    ],
    extras_require={
        "test": [
            "pytest>=7.0.0",
            "pytest-asyncio>=0.21.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "voice-chat=voice_chat.cli.main:cli",
        ],
    },
)
