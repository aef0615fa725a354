"""
tagscope.pipeline
═════════════════

The linear analysis pipeline:

    Resolve → Generate → Collect → Aggregate   (→ Report, in tagscope.report)

There are no cycles and no checkpoints.  Resolve is the only stage that
can fail on well-formed input (:class:`~tagscope.errors.ConfigurationError`);
every later stage is a total function of its input.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from tagscope.accesses import Deduction, WriteAnchor, collect_accesses
from tagscope.aggregate import AggregateDescriptor, resolve_aggregate
from tagscope.constraints import TypingFact, generate_constraints
from tagscope.ir import Program
from tagscope.usage import FieldUsageSet, aggregate_usage

logger = logging.getLogger(__name__)

DEFAULT_TYPE = "Node"
DEFAULT_FIELD = "Op"
DEFAULT_SENTINEL = "OXXX"


@dataclass
class AnalysisConfig:
    """Knobs for one analysis run."""

    type_name: str = DEFAULT_TYPE
    discriminant: str = DEFAULT_FIELD
    sentinel: str = DEFAULT_SENTINEL
    workers: int = 1
    write_anchor: WriteAnchor = WriteAnchor.BLOCK


@dataclass
class AnalysisResult:
    descriptor: AggregateDescriptor
    facts: List[TypingFact] = field(default_factory=list)
    deductions: List[Deduction] = field(default_factory=list)
    usage: Optional[FieldUsageSet] = None


def analyze(program: Program, config: Optional[AnalysisConfig] = None) -> AnalysisResult:
    """Run the whole pipeline over *program*."""
    config = config or AnalysisConfig()
    descriptor = resolve_aggregate(program, config.type_name,
                                   config.discriminant, config.sentinel)
    facts = generate_constraints(program.functions, descriptor,
                                 workers=config.workers)
    deductions = collect_accesses(facts, descriptor,
                                  write_anchor=config.write_anchor,
                                  workers=config.workers)
    usage = aggregate_usage(deductions, descriptor)
    return AnalysisResult(descriptor=descriptor, facts=facts,
                          deductions=deductions, usage=usage)
