# errinfer/errors.py
"""
Exception types raised by errinfer.

The inference engine itself never aborts a run: a sub-computation that
cannot decide simply yields ``None`` and the block it was looking at stays
unclassified.  The exceptions below are reserved for misuse of the public
API (malformed program models, formulas a backend cannot translate).

Hierarchy::

    ErrInferError
    ├── ProgramModelError   - malformed IR handed to the engine
    └── OracleError         - formula cannot be translated for a backend
"""

from __future__ import annotations

from typing import Any, Optional


class ErrInferError(Exception):
    """Base class for every exception raised by errinfer."""


class ProgramModelError(ErrInferError):
    """The program model violates a structural requirement.

    Raised when a :class:`~errinfer.ctrlflow.FunctionModel` is built for a
    function with a block lacking a terminator, or with a branch whose
    target lives in another function.
    """

    def __init__(self, message: str, value: Optional[Any] = None) -> None:
        super().__init__(message)
        self.value = value


class OracleError(ErrInferError):
    """A formula node has no translation for the selected SMT backend."""
