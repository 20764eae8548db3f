"""Per-entry diagnostics for batch operations.

WHY: Packing, extracting and batch minimizing touch many files. One bad
file must not abort the whole batch, yet the caller still needs to know
exactly which entries failed and why.

HOW: Batch loops catch failures at the entry boundary and record a
Diagnostic (index, subject, message, severity) in a BatchResult, next to
the paths that were written successfully.

RULES:
- Severity is "warning" (work continued normally) or "error" (the entry
  was skipped or zero-filled)
- BatchResult.ok is True only when no error diagnostics were recorded
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional

WARNING = "warning"
ERROR = "error"


@dataclass
class Diagnostic:
    """One problem found while processing a single entry."""

    subject: str
    message: str
    severity: str = WARNING
    index: Optional[int] = None

    def __str__(self) -> str:
        where = self.subject if self.index is None else "#{} {}".format(self.index, self.subject)
        return "{}: {}: {}".format(self.severity, where, self.message)


@dataclass
class BatchResult:
    """Outcome of a batch operation: written files plus diagnostics."""

    written: List[str] = field(default_factory=list)
    diagnostics: List[Diagnostic] = field(default_factory=list)

    @property
    def errors(self) -> List[Diagnostic]:
        return [d for d in self.diagnostics if d.severity == ERROR]

    @property
    def ok(self) -> bool:
        return not self.errors

    def warn(self, subject: str, message: str, index: Optional[int] = None) -> None:
        self.diagnostics.append(Diagnostic(subject, message, WARNING, index))

    def fail(self, subject: str, message: str, index: Optional[int] = None) -> None:
        self.diagnostics.append(Diagnostic(subject, message, ERROR, index))
