"""Setup script for the Gemini live client."""

from setuptools import setup, find_packages

setup(
    name="gemweblive",
    version="0.1.0",
    description="Gemini live API client with capability-driven session setup",
    packages=find_packages(include=['gemweblive', 'gemweblive.*']),
    python_requires=">=3.11",
    install_requires=[
        "python-dotenv>=1.0.0",
        "google-generativeai>=0.3.0",
        "pygame>=2.5.0",
        "structlog>=23.0.0",
        "click>=8.0.0",
        "websockets>=13.0",
        "sounddevice>=0.4.6",
    ],
    extras_require={
        "test": [
            "pytest>=7.0.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "gemweblive=gemweblive.cli.main:cli",
        ],
    },
)
