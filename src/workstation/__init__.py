"""
Workstation - containerized development environments on local or remote Docker engines
"""

__version__ = "0.3.0"

from .core import Workstation, WorkstationError

__all__ = ["Workstation", "WorkstationError"]
