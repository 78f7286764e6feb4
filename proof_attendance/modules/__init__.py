# Proof Attendance System - Modules Package
"""
Core modules for the proof attendance system: token handling, rotation,
the commit protocol and the persistent store.
"""

__version__ = "1.0.0"
