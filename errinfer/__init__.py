"""
errinfer — Error-Handling Inference for Foreign-Function Bindings
=================================================================

Infers, for every function of a compiled program, how it reports errors:
the constant codes it returns on failure and the reporting calls that
accompany them.  The results feed the generation of safer bindings.

Core modules
------------
ir
    A small SSA program representation with stable value handles.
ctrlflow
    Dominators, post-dominators, control dependence, block return values.
callgraph
    Call graph with Tarjan SCCs, used to visit callees first.
formula / oracle
    Path-condition expression trees and the z3 satisfiability oracle.
annotations / summaries
    Error descriptors, summaries and the external summary stores.
path_conditions / classify / engine
    The inference proper: path conditions, block classification and the
    generalising fixpoint.
merge
    Canonicalisation of a function's descriptors into one annotation.

Quick start
-----------
>>> from errinfer import compute_error_summary, summarize_function
>>> summary = compute_error_summary(module.functions, deps, indirect_calls)
>>> for f in summary.functions():
...     print(f.name, summarize_function(summary, f))
"""

from __future__ import annotations

import importlib
import logging
import sys
from typing import List

# ---------------------------------------------------------------------------
# Package metadata
# ---------------------------------------------------------------------------

__version__ = "0.1.0"
__all__: List[str] = []          # populated below

_log = logging.getLogger(__name__)
_log.addHandler(logging.NullHandler())

# ---------------------------------------------------------------------------
# Re-exported names: (module_name, list_of_names_to_import)
# ---------------------------------------------------------------------------

_CORE_MODULES = {
    "errors": [
        "ErrInferError",
        "ProgramModelError",
        "OracleError",
    ],
    "diagnostics": [
        "Diagnostic",
        "Diagnostics",
        "DiagnosticSeverity",
        "SourceLocation",
    ],
    "ir": [
        "Module",
        "Function",
        "ExternalFunction",
        "BasicBlock",
        "IRBuilder",
        "CmpPredicate",
        "CastKind",
    ],
    "ctrlflow": [
        "FunctionModel",
    ],
    "formula": [
        "Formula",
        "RelOp",
        "conjoin",
        "disjoin",
        "any_of",
    ],
    "oracle": [
        "SatOracle",
        "SolverResult",
        "Z3Oracle",
        "CachingOracle",
    ],
    "annotations": [
        "ErrorInt",
        "ErrorArgument",
        "FunctionCall",
        "IntegerCodes",
        "PointerCodes",
        "ErrorDescriptor",
        "ErrorBlock",
        "SuccessBlock",
        "ReportsErrors",
        "ErrorSummary",
        "ErrorState",
        "Witness",
    ],
    "summaries": [
        "DependencySummary",
        "IndirectCallSummary",
    ],
    "classifier": [
        "Classifier",
        "ClassifierKind",
        "ErrorFuncClass",
        "FEATURE_VECTOR_LENGTH",
    ],
    "config": [
        "ErrorAnalysisOptions",
        "default_error_analysis_options",
    ],
    "merge": [
        "summarize_function",
        "error_descriptors_for",
        "unify_error_actions",
        "unify_return_codes",
    ],
    "engine": [
        "compute_error_summary",
        "identify_error_handling",
        "error_handling_training_data",
    ],
}


def _import_names(module_rel_name: str, names: List[str]) -> None:
    """Import *names* from a submodule and bind them in the package
    namespace, together with the submodule itself."""
    fq_name = f"{__name__}.{module_rel_name}"
    try:
        mod = importlib.import_module(fq_name)
    except ImportError as exc:
        raise ImportError(
            f"errinfer: required submodule '{module_rel_name}' "
            f"failed to import: {exc}"
        ) from exc

    current_module = sys.modules[__name__]
    for name in names:
        if not hasattr(mod, name):
            raise AttributeError(
                f"errinfer.{module_rel_name} does not export '{name}'")
        setattr(current_module, name, getattr(mod, name))
        __all__.append(name)
    setattr(current_module, module_rel_name, mod)
    __all__.append(module_rel_name)


for _mod, _names in _CORE_MODULES.items():
    _import_names(_mod, _names)

del _mod, _names


# ---------------------------------------------------------------------------
# Package-level utilities
# ---------------------------------------------------------------------------

def configure_logging(verbosity: int) -> None:
    """Send ``errinfer`` log records to stderr.

    Parameters
    ----------
    verbosity:
        0 → WARNING, 1 → INFO, 2+ → DEBUG.
    """
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity >= 2:
        level = logging.DEBUG

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        logging.Formatter(
            fmt="%(asctime)s [%(levelname)-5.5s] %(name)s: %(message)s",
            datefmt="%H:%M:%S",
        )
    )
    _log.setLevel(level)
    _log.addHandler(handler)


def list_submodules() -> List[str]:
    return sorted(_CORE_MODULES)


__all__ += ["configure_logging", "list_submodules", "__version__"]
