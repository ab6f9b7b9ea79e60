"""Local execution on the controller."""

from .session import LocalSession, LocalCommandResult
from .probe import LocalProbe, LocalHostFacts

__all__ = ["LocalSession", "LocalCommandResult", "LocalProbe", "LocalHostFacts"]
