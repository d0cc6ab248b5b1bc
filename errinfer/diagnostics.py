"""
errinfer/diagnostics.py
═══════════════════════

Diagnostic sink shared by the analyses.

Diagnostics report problems with the *analysis* (for example indirect-call
candidates that disagree about a callee's error codes), not errors in the
analysed program.  They never interrupt a run.

Usage::

    diags = Diagnostics()
    diags.emit_warning(SourceLocation("parse", "entry"), "ErrorAnalysis",
                       "Mismatched error return codes for indirect call fp")
    for d in diags.warnings():
        print(d)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Iterator, List, Optional

logger = logging.getLogger(__name__)


class DiagnosticSeverity(Enum):
    """Severity levels, ordered from most to least severe."""
    ERROR = "error"
    WARNING = "warning"
    INFORMATION = "information"
    DEBUG = "debug"


_LOG_LEVELS = {
    DiagnosticSeverity.ERROR: logging.ERROR,
    DiagnosticSeverity.WARNING: logging.WARNING,
    DiagnosticSeverity.INFORMATION: logging.INFO,
    DiagnosticSeverity.DEBUG: logging.DEBUG,
}


@dataclass(frozen=True)
class SourceLocation:
    """A program point inside the analysed module."""
    function: str = ""
    block: str = ""

    def __str__(self) -> str:
        if self.block:
            return f"{self.function}:{self.block}"
        return self.function


@dataclass(frozen=True)
class Diagnostic:
    """
    A single diagnostic.

    Attributes
    ----------
    severity : DiagnosticSeverity
    tag      : Name of the analysis that produced it (e.g. "ErrorAnalysis")
    message  : Human-readable description
    location : Optional program point
    """
    severity: DiagnosticSeverity
    tag: str
    message: str
    location: Optional[SourceLocation] = None

    def __str__(self) -> str:
        loc = f"{self.location}: " if self.location else ""
        return f"{loc}{self.severity.value}: [{self.tag}] {self.message}"


class Diagnostics:
    """Ordered, duplicate-free collection of :class:`Diagnostic` records.

    The fixpoint re-runs every rule on each iteration, so the same warning
    is typically emitted several times; only the first occurrence is kept.
    """

    def __init__(self) -> None:
        self._items: List[Diagnostic] = []
        self._seen: set = set()

    def emit(self, diagnostic: Diagnostic) -> None:
        if diagnostic in self._seen:
            return
        self._seen.add(diagnostic)
        self._items.append(diagnostic)
        logger.log(_LOG_LEVELS[diagnostic.severity], "%s", diagnostic)

    def emit_warning(
        self,
        location: Optional[SourceLocation],
        tag: str,
        message: str,
    ) -> None:
        self.emit(Diagnostic(DiagnosticSeverity.WARNING, tag, message, location))

    def warnings(self) -> List[Diagnostic]:
        return [d for d in self._items
                if d.severity is DiagnosticSeverity.WARNING]

    def __iter__(self) -> Iterator[Diagnostic]:
        return iter(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __repr__(self) -> str:
        return f"Diagnostics({len(self._items)} items)"
