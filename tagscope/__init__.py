"""
tagscope — Field Usage Analysis for Tagged Aggregates
=====================================================

Answers one question about a "god struct" that multiplexes many record
shapes through a single discriminant field: *which other fields are
touched in code where the discriminant is known to hold a given tag?*

Core modules
------------
ir
    Read-only SSA-style IR: programs, functions, blocks, values.
irtext
    Loader for the S-expression IR interchange format.
dominators
    Per-function dominator trees with constant-time dominance queries.
aggregate
    Aggregate Resolver: type layer → :class:`AggregateDescriptor`.
constraints
    Constraint Generator: guarded comparisons and tag writes → typing facts.
accesses
    Field Access Collector: dominance-scoped field uses per fact.
usage
    Usage Aggregator: per-tag field bitsets.
report
    Provenance and summary text views.
pipeline
    The end-to-end :func:`analyze` driver.

Quick start
-----------
>>> from tagscope import load_program, analyze, AnalysisConfig
>>> result = analyze(load_program(text), AnalysisConfig(type_name="Node"))
>>> result.usage.field_names(result.descriptor.tag_names.index("OADD"))
['Left', 'Right']
"""

from __future__ import annotations

import logging

__version__ = "0.3.0"

from tagscope.accesses import Deduction, FieldAccess, WriteAnchor
from tagscope.aggregate import AggregateDescriptor, resolve_aggregate
from tagscope.constraints import FactOrigin, TypingFact
from tagscope.errors import (
    ConfigurationError,
    InvariantViolation,
    IRLoadError,
    TagScopeError,
)
from tagscope.irtext import load_file, load_program
from tagscope.pipeline import AnalysisConfig, AnalysisResult, analyze
from tagscope.report import Reporter
from tagscope.usage import FieldUsageSet

_log = logging.getLogger("tagscope")
_log.addHandler(logging.NullHandler())

__all__ = [
    "__version__",
    "AggregateDescriptor",
    "AnalysisConfig",
    "AnalysisResult",
    "ConfigurationError",
    "Deduction",
    "FactOrigin",
    "FieldAccess",
    "FieldUsageSet",
    "InvariantViolation",
    "IRLoadError",
    "Reporter",
    "TagScopeError",
    "TypingFact",
    "WriteAnchor",
    "analyze",
    "load_file",
    "load_program",
    "resolve_aggregate",
]
