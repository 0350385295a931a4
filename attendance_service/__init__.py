"""
Attendance Service - Face Matching and Attendance Gating

A modular Python service that matches facial feature vectors against an
enrolled gallery, gates attendance events by cooldown and daily uniqueness,
and pauses for operator acknowledgment after each recorded event.
"""

__version__ = "1.0.0"
__author__ = "Attendance Service Team"
