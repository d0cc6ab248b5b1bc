# errinfer/config.py
"""
Options controlling one error-handling inference run.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from errinfer.classifier import Classifier


@dataclass
class ErrorAnalysisOptions:
    """
    Attributes
    ----------
    classifier : Classifier
        How error-reporting functions are recognised for generalisation.
    generalize_from_returns : bool
        Run the generalise-from-error-codes rule.  The rule currently learns
        nothing; the flag is kept so callers can switch it off explicitly.
    solver_timeout_ms : int or None
        Per-query SMT timeout; ``None`` waits for a definite answer.
    order_by_callgraph : bool
        Visit functions callee first within each iteration.
    """
    classifier: Classifier = field(default_factory=Classifier.default)
    generalize_from_returns: bool = True
    solver_timeout_ms: Optional[int] = None
    order_by_callgraph: bool = True


def default_error_analysis_options() -> ErrorAnalysisOptions:
    return ErrorAnalysisOptions()
