"""
Rewatch Application Package.

Command line entry point and the shared application context.
Requires Python 3.11+.
"""

from app.context import AppContext

__all__ = ["AppContext"]
