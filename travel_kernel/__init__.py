"""
Travel Kernel - approval workflow core

A role-routed approval state machine for travel requests with:
- Data-driven routing per request type
- Atomic status + step-history transitions
- Append-only approval step log
- Execution tracking for at-most-one in-flight evaluation per request
"""

__version__ = "0.1.0"
