from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from models.execution_log import ExecutionResult


class BaseExecutor(ABC):
    """Runs one workflow against one stored trigger context."""

    @abstractmethod
    async def run(self,
                  workflow_id: str,
                  context: Dict[str, Any],
                  execution_log_id: Optional[str] = None) -> ExecutionResult:
        pass
