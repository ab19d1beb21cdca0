"""
DevShop - Conversation orchestration engine for requirements gathering.

This package coordinates multi-turn conversations between a user and a
Business Analyst agent, optionally joined by a Tech Lead agent, with
budget tracking, agent routing and resumable session state.
"""

__version__ = "1.0.0"
__author__ = "DevShop Development Team"

# Core components
from .models import *

__all__ = [
    "models",
    "services",
    "lib",
]
