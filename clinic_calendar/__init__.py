"""Clinic calendar: availability reconciliation and time-zone-aware calendar views."""

__version__ = "0.1.0"
