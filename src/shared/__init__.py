"""
Shared Kernel Module
====================

Shared infrastructure used by the triage bounded context and the
application shell: structured logging and HTTP middleware.

DO NOT add decision logic to the shared kernel.
"""

__version__ = "1.0.0"
