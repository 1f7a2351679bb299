"""Analytics Workflows.

Persistent multi-step analytics definitions over a relational data store:
- static validation of step sequences
- a loop-guarded step interpreter
- timer and change-event scheduling with a shared debounce
"""

__version__ = "0.1.0"

from analytics_workflows.engine.config import EngineSettings

__all__ = ["__version__", "EngineSettings"]
