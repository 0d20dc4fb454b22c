"""Node executors — one callable per node type.

Executors depend on the domain layer and the CRM repository. The
interpreter that sequences them lives in :mod:`crmflow.services.execution`.
"""

from crmflow.executors.base import (
    ExecutionRequest,
    ExecutionRuntime,
    NodeExecutionError,
    NodeExecutor,
)
from crmflow.executors.registry import get_executor

__all__ = [
    "ExecutionRequest",
    "ExecutionRuntime",
    "NodeExecutionError",
    "NodeExecutor",
    "get_executor",
]
