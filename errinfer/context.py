# errinfer/context.py
"""
Read-mostly environment of one inference run.

Bundles the collaborators every rule needs (dependency summary, indirect
call resolution, the SAT oracle, the options) with the fixpoint-local
:class:`~errinfer.annotations.ErrorState`.  One context belongs to exactly
one run; nothing in it is process-global.
"""

from __future__ import annotations

import logging
from typing import List, Optional

from errinfer.annotations import ErrorState, ErrorSummary, FuncAnnotation
from errinfer.config import ErrorAnalysisOptions
from errinfer.formula import Formula
from errinfer.ir import Value
from errinfer.merge import lookup_function_summary_list
from errinfer.oracle import SatOracle
from errinfer.summaries import (
    Callee,
    DependencySummary,
    IndirectCallSummary,
    call_targets,
)

logger = logging.getLogger(__name__)


class AnalysisContext:

    def __init__(
        self,
        dependency_summary: DependencySummary,
        indirect_calls: IndirectCallSummary,
        oracle: SatOracle,
        options: ErrorAnalysisOptions,
        state: Optional[ErrorState] = None,
    ) -> None:
        self.dependency_summary = dependency_summary
        self.indirect_calls = indirect_calls
        self.oracle = oracle
        self.options = options
        self.state = state if state is not None else ErrorState()
        self.unknown_answers = 0

    def call_targets(self, callee: Value) -> List[Callee]:
        return call_targets(self.indirect_calls, callee)

    def lookup_summary_list(self, summary: ErrorSummary,
                            callee: Value) -> List[FuncAnnotation]:
        return lookup_function_summary_list(summary, self.dependency_summary,
                                            callee)

    def is_satisfiable(self, formula: Formula) -> Optional[bool]:
        """Three-valued satisfiability; ``None`` means the oracle could not
        decide and the caller must abstain."""
        answer = self.oracle.is_satisfiable(formula)
        if answer is None:
            self.unknown_answers += 1
        return answer
