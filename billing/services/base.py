from dataclasses import dataclass, field
from typing import Any, List


@dataclass
class ServiceResult:
    """Outcome of an operation whose side effects are best-effort.

    ``warnings`` lists the side effects that failed; the main effect has
    already been applied when a result is returned.
    """
    value: Any = None
    warnings: List[str] = field(default_factory=list)

    @property
    def ok(self):
        return not self.warnings
