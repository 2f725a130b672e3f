"""
failoverlab - disposable failover-test topologies for clustered databases
"""

__version__ = "0.1.0"

from .core import LifecycleManager
from .errors import OrchestratorError

__all__ = ["LifecycleManager", "OrchestratorError"]
