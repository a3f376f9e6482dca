"""Sandbox execution: the executor protocol, the timeout-enforcing client, and the Piston transport."""

from .executor import CodeExecutor, ExecutorTransportError, RawExecution, SandboxClient, classify
from .piston import PistonConfig, PistonExecutor

__all__ = [
    "CodeExecutor",
    "ExecutorTransportError",
    "PistonConfig",
    "PistonExecutor",
    "RawExecution",
    "SandboxClient",
    "classify",
]
