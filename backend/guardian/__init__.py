"""
Guardian Angel
==============

Personal productivity backend: branching timelines, process flows,
AI assistance and push notifications.
"""

__version__ = "0.1.0"
