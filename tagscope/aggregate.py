"""
tagscope.aggregate
══════════════════

Aggregate Resolver: turns the program's type layer into an
:class:`AggregateDescriptor`.

The descriptor names the tagged aggregate under analysis, the index of its
discriminant field, its ordered member names, and the tag-name table
indexed by tag value.  The tag table comes from the first constant group
whose first declared name is the agreed *sentinel* (``OXXX`` for the
classic compiler ``Node`` type).

Every lookup failure raises :class:`~tagscope.errors.ConfigurationError`;
nothing downstream can run without the descriptor.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

from tagscope.errors import ConfigurationError
from tagscope.ir import ConstGroup, Opcode, Program, StructType, Value, deref

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AggregateDescriptor:
    """Read-only description of the tagged aggregate type."""

    type_name: str
    discriminant: int
    field_names: Tuple[str, ...]
    tag_names: Tuple[str, ...]

    @property
    def field_count(self) -> int:
        return len(self.field_names)

    @property
    def tag_count(self) -> int:
        return len(self.tag_names)

    @property
    def discriminant_name(self) -> str:
        return self.field_names[self.discriminant]

    @property
    def declared_tag_count(self) -> int:
        """Tags named by the constant group, placeholders excluded."""
        return sum(1 for v in range(len(self.tag_names)) if not self.is_placeholder(v))

    def is_placeholder(self, value: int) -> bool:
        return self.tag_names[value] == f"<{value}>"

    def has_tag(self, value: int) -> bool:
        return 0 <= value < len(self.tag_names)

    def tag_name(self, value: int) -> str:
        if self.has_tag(value):
            return self.tag_names[value]
        return f"<{value}>"

    def field_name(self, index: int) -> str:
        if 0 <= index < len(self.field_names):
            return self.field_names[index]
        return f"#{index}"

    # ----- value classification ---------------------------------------------

    def is_aggregate(self, value: Value) -> bool:
        """*value* has the aggregate type itself."""
        return value.type == self.type_name

    def is_aggregate_pointer(self, value: Value) -> bool:
        """*value* is a pointer to the aggregate type."""
        return deref(value.type) == self.type_name

    def is_discriminant_read(self, instr: Value) -> bool:
        """A FIELD read of the discriminant out of an aggregate value."""
        return (instr.opcode is Opcode.FIELD
                and instr.field == self.discriminant
                and self.is_aggregate(instr.base))

    def is_discriminant_addr(self, instr: Value) -> bool:
        """A FIELD_ADDR of the discriminant through a pointer to the aggregate."""
        return (instr.opcode is Opcode.FIELD_ADDR
                and instr.field == self.discriminant
                and self.is_aggregate_pointer(instr.base))


def find_tag_group(groups: Iterable[ConstGroup], sentinel: str) -> Optional[ConstGroup]:
    """Return the first constant group that starts with *sentinel*."""
    for group in groups:
        if group.first_name == sentinel:
            return group
    return None


def build_tag_table(group: ConstGroup) -> Tuple[str, ...]:
    """Lay the group's names out by value: ``table[value] == name``.

    Values missing from the group get a ``<N>`` placeholder so the table
    length is always ``max value + 1``.
    """
    by_value: Dict[int, str] = {}
    for name, value in group:
        if value < 0:
            raise ConfigurationError(
                f"tag constant {name} has negative value {value}")
        if value in by_value:
            raise ConfigurationError(
                f"tag constants {by_value[value]} and {name} share value {value}")
        by_value[value] = name
    size = max(by_value) + 1
    table: List[str] = []
    for value in range(size):
        name = by_value.get(value)
        if name is None:
            logger.debug("tag value %d has no declared name", value)
            name = f"<{value}>"
        table.append(name)
    return tuple(table)


def resolve_aggregate(
    program: Program,
    type_name: str,
    discriminant: str,
    sentinel: str,
) -> AggregateDescriptor:
    """Locate the aggregate, its discriminant and its tag table.

    Raises
    ------
    ConfigurationError
        If the type, the field, or the constant group cannot be found.
    """
    struct: Optional[StructType] = program.lookup_struct(type_name)
    if struct is None:
        raise ConfigurationError(f"could not find type {type_name}",
                                 hint="select the aggregate with --type")

    group = find_tag_group(program.const_groups, sentinel)
    if group is None:
        raise ConfigurationError(
            f"could not find tag constants starting at {sentinel}",
            hint="name the first tag constant with --sentinel")
    tags = build_tag_table(group)

    index = struct.index_of(discriminant)
    if index is None:
        raise ConfigurationError(
            f"could not find {discriminant} field in {type_name}",
            hint="select the discriminant with --field")

    logger.info("resolved %s.%s (field %d of %d), %d tags",
                type_name, discriminant, index, len(struct.fields), len(tags))
    return AggregateDescriptor(
        type_name=type_name,
        discriminant=index,
        field_names=struct.fields,
        tag_names=tags,
    )
