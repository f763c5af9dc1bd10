"""
CallforBlood Emergency Engine
=============================

Core modules for the CallforBlood emergency notification system.

This package provides:
- Multi-channel notification delivery with ordered fallback
- In-memory retry queue with exponential backoff
- Emergency campaign coordination and automatic escalation
- Campaign analytics
"""

__version__ = "1.0.0"
