"""Slotbook - booking engine for host availability, team scheduling and webhooks"""

__version__ = "1.0.0"
