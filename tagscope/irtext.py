"""
tagscope.irtext
═══════════════

Loader for the textual IR interchange format.

The format is a plain S-expression document::

    (program demo
      (struct Node ((Op int) (Left *Node) (Right *Node)))
      (consts OXXX ONAME OADD)              ; implicit values 0, 1, 2
      (consts (KA 10) (KB 11))              ; explicit values
      (func walk (file "walk.go") (params (n *Node))
        (block entry
          (t0 = field-addr n Op (line 3))
          (t1 = load t0)
          (t2 = eq t1 OADD)
          (if t2 then done))
        (block then
          (t3 = field-addr n Left (line 4 9))
          (jump done))
        (block done
          (return))))

Parsing happens in two steps.  A Parsimonious PEG grammar turns the text
into nested Python lists of :class:`Symbol`, ``str`` and ``int`` atoms;
:class:`ProgramLoader` then walks those lists and emits a
:class:`~tagscope.ir.Program` through the block builder helpers, so the
referrer lists and control-flow edges come out exactly as they do for a
hand-built program.

Public API
----------
    Symbol          - a bare (unquoted) atom
    parse_sexp      - text → nested lists
    ProgramLoader   - nested lists → Program
    load_program    - text → Program
    load_file       - path → Program
"""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, List, Optional, Sequence, Tuple

from parsimonious.exceptions import ParseError, VisitationError
from parsimonious.grammar import Grammar
from parsimonious.nodes import NodeVisitor

from tagscope.errors import IRLoadError
from tagscope.ir import (
    BasicBlock,
    ConstGroup,
    Function,
    NO_POS,
    Opcode,
    Program,
    SourcePos,
    StructType,
    Value,
    deref,
    pointer_to,
)

logger = logging.getLogger(__name__)


# ───────────────────────────────────────────────────────────────────
#  Grammar
# ───────────────────────────────────────────────────────────────────

SEXP_GRAMMAR = Grammar(r'''
    document    = ws form ws
    form        = list / atom
    list        = "(" ws items ")"
    items       = (form ws)*
    atom        = string / token
    string      = ~r'"(?:[^"\\]|\\.)*"'
    token       = ~r'[^\s()";]+'
    ws          = (~r"\s+" / comment)*
    comment     = ~r";[^\n]*"
''')

_INT_RE = re.compile(r"-?[0-9]+")
_ESCAPE_RE = re.compile(r"\\(.)")


class Symbol(str):
    """A bare atom, as opposed to a quoted string literal."""

    __slots__ = ()

    def __repr__(self) -> str:
        return f"Symbol({str(self)!r})"


class SexpBuilder(NodeVisitor):
    """Transforms the Parsimonious parse tree into nested lists."""

    def generic_visit(self, node, visited_children):
        return visited_children or node

    def visit_document(self, node, visited_children):
        _, form, _ = visited_children
        return form

    def visit_form(self, node, visited_children):
        return visited_children[0]

    def visit_list(self, node, visited_children):
        _, _, items, _ = visited_children
        return items

    def visit_items(self, node, visited_children):
        return [form for form, _ in visited_children]

    def visit_atom(self, node, visited_children):
        return visited_children[0]

    def visit_string(self, node, visited_children):
        return _ESCAPE_RE.sub(r"\1", node.text[1:-1])

    def visit_token(self, node, visited_children):
        text = node.text
        if _INT_RE.fullmatch(text):
            return int(text)
        return Symbol(text)


def parse_sexp(text: str, filename: str = "<string>") -> Any:
    """Parse *text* into nested lists.

    Raises
    ------
    IRLoadError
        On any syntax error.
    """
    try:
        tree = SEXP_GRAMMAR.parse(text)
    except ParseError as exc:
        raise IRLoadError(
            f"syntax error at line {exc.line()}, column {exc.column()}",
            where=filename) from exc
    try:
        return SexpBuilder().visit(tree)
    except VisitationError as exc:
        raise IRLoadError(f"malformed document: {exc}", where=filename) from exc


# ───────────────────────────────────────────────────────────────────
#  Loader
# ───────────────────────────────────────────────────────────────────

_COMPARE_OPS = {
    "eq": "==",
    "ne": "!=",
    "lt": "<",
    "le": "<=",
    "gt": ">",
    "ge": ">=",
}

_TERMINATORS = (Opcode.IF, Opcode.JUMP, Opcode.RETURN)

_OPTION_HEADS = ("line", "type")


def _head(form: Any) -> Optional[str]:
    if isinstance(form, list) and form and isinstance(form[0], Symbol):
        return str(form[0])
    return None


def _is_symbol(x: Any) -> bool:
    return isinstance(x, Symbol)


class _FunctionScope:
    """Name → value bindings plus the block table of one function."""

    def __init__(self, fn: Function) -> None:
        self.fn = fn
        self.values: Dict[str, Value] = {}
        self.blocks: Dict[str, BasicBlock] = {}
        self.where = fn.name

    def at(self, block: BasicBlock) -> None:
        self.where = f"{self.fn.name}/{block.name}"


class ProgramLoader:
    """Builds a :class:`Program` from a parsed document.

    Struct and constant declarations are loaded before any function, so a
    function may use a type or constant declared further down the file.
    """

    def __init__(self, filename: str = "<string>") -> None:
        self.filename = filename
        self.program = Program()
        self._field_types: Dict[str, Tuple[str, ...]] = {}

    # ----- entry point ------------------------------------------------------

    def load(self, document: Any) -> Program:
        if _head(document) != "program":
            raise IRLoadError("document must be a (program ...) form",
                              where=self.filename)
        rest = document[1:]
        if rest and _is_symbol(rest[0]):
            self.program.name = str(rest[0])
            rest = rest[1:]

        funcs = []
        for form in rest:
            head = _head(form)
            if head == "struct":
                self._load_struct(form)
            elif head == "consts":
                self._load_consts(form)
            elif head == "func":
                funcs.append(form)
            else:
                raise IRLoadError(f"unknown top-level form {head or form!r}",
                                  where=self.filename)
        for form in funcs:
            self._load_function(form)

        logger.info("loaded %s: %d functions, %d structs, %d constant groups",
                    self.filename, len(self.program.functions),
                    len(self.program.structs), len(self.program.const_groups))
        return self.program

    # ----- type layer -------------------------------------------------------

    def _load_struct(self, form: List[Any]) -> None:
        if len(form) != 3 or not _is_symbol(form[1]) or not isinstance(form[2], list):
            raise IRLoadError("expected (struct NAME (FIELD ...))",
                              where=self.filename)
        name = str(form[1])
        names: List[str] = []
        types: List[str] = []
        for member in form[2]:
            if _is_symbol(member):
                names.append(str(member))
                types.append("")
            elif (isinstance(member, list) and len(member) == 2
                  and all(_is_symbol(m) for m in member)):
                names.append(str(member[0]))
                types.append(str(member[1]))
            else:
                raise IRLoadError(f"bad member {member!r}",
                                  where=f"struct {name}")
        if len(set(names)) != len(names):
            raise IRLoadError("duplicate member name", where=f"struct {name}")
        self.program.add_struct(StructType(name, tuple(names)))
        self._field_types[name] = tuple(types)

    def _load_consts(self, form: List[Any]) -> None:
        members: List[Tuple[str, int]] = []
        next_value = 0
        for item in form[1:]:
            if _is_symbol(item):
                cname, value = str(item), next_value
            elif (isinstance(item, list) and len(item) == 2
                  and _is_symbol(item[0]) and isinstance(item[1], int)):
                cname, value = str(item[0]), item[1]
            else:
                raise IRLoadError(f"bad constant {item!r}",
                                  where=self.filename)
            members.append((cname, value))
            next_value = value + 1
        if not members:
            raise IRLoadError("empty constant group", where=self.filename)
        self.program.add_const_group(ConstGroup(tuple(members)))

    # ----- functions --------------------------------------------------------

    def _load_function(self, form: List[Any]) -> None:
        if len(form) < 2 or not _is_symbol(form[1]):
            raise IRLoadError("expected (func NAME ...)", where=self.filename)
        name = str(form[1])
        file = self.filename
        params: Sequence[Any] = ()
        block_forms = []
        for item in form[2:]:
            head = _head(item)
            if head == "file" and len(item) == 2 and isinstance(item[1], str):
                file = str(item[1])
            elif head == "params":
                params = item[1:]
            elif head == "block":
                block_forms.append(item)
            else:
                raise IRLoadError(f"unexpected item {item!r}", where=name)

        fn = self.program.add_function(name, file)
        scope = _FunctionScope(fn)
        for p in params:
            if not (isinstance(p, list) and len(p) == 2
                    and _is_symbol(p[0]) and _is_symbol(p[1])):
                raise IRLoadError(f"bad parameter {p!r}", where=name)
            scope.values[str(p[0])] = fn.add_param(str(p[0]), str(p[1]))

        # Blocks exist up front so branches can name later blocks.
        for bf in block_forms:
            if len(bf) < 2 or not _is_symbol(bf[1]):
                raise IRLoadError("expected (block NAME ...)", where=name)
            bname = str(bf[1])
            if bname in scope.blocks:
                raise IRLoadError(f"duplicate block {bname}", where=name)
            scope.blocks[bname] = fn.add_block(bname)

        for bf in block_forms:
            block = scope.blocks[str(bf[1])]
            scope.at(block)
            terminated = False
            for instr in bf[2:]:
                if terminated:
                    raise IRLoadError("instruction after block terminator",
                                      where=scope.where)
                value = self._load_instr(scope, block, instr)
                terminated = value.opcode in _TERMINATORS
        logger.debug("%s: %d blocks, %d params", name, len(fn.blocks), len(fn.params))

    # ----- instructions -----------------------------------------------------

    def _load_instr(self, scope: _FunctionScope, block: BasicBlock,
                    form: Any) -> Value:
        if not isinstance(form, list) or not form:
            raise IRLoadError(f"bad instruction {form!r}", where=scope.where)

        result = ""
        if len(form) >= 2 and form[1] == "=" and _is_symbol(form[0]):
            result = str(form[0])
            form = form[2:]
            if result in scope.values:
                raise IRLoadError(f"{result} is defined twice", where=scope.where)

        args, pos, type_override = self._split_options(scope, form)
        if not args or not _is_symbol(args[0]):
            raise IRLoadError(f"missing opcode in {form!r}", where=scope.where)
        op, args = str(args[0]), args[1:]

        value = self._emit(scope, block, op, args, result, pos)
        if type_override:
            value.type = type_override
        if result:
            scope.values[result] = value
        return value

    def _split_options(self, scope: _FunctionScope,
                       form: List[Any]) -> Tuple[List[Any], SourcePos, str]:
        pos = NO_POS
        type_override = ""
        args = list(form)
        while args and _head(args[-1]) in _OPTION_HEADS:
            opt = args.pop()
            if opt[0] == "line":
                nums = opt[1:]
                if not nums or len(nums) > 2 or not all(isinstance(n, int) for n in nums):
                    raise IRLoadError(f"bad position {opt!r}", where=scope.where)
                pos = scope.fn.pos(*nums)
            else:
                if len(opt) != 2 or not _is_symbol(opt[1]):
                    raise IRLoadError(f"bad type option {opt!r}", where=scope.where)
                type_override = str(opt[1])
        return args, pos, type_override

    def _arity(self, scope: _FunctionScope, op: str, args: List[Any],
               n: int) -> None:
        if len(args) != n:
            raise IRLoadError(f"{op} takes {n} operands, got {len(args)}",
                              where=scope.where)

    def _emit(self, scope: _FunctionScope, block: BasicBlock, op: str,
              args: List[Any], result: str, pos: SourcePos) -> Value:
        if op in ("field", "field-addr"):
            self._arity(scope, op, args, 2)
            base = self._operand(scope, args[0])
            return self._field(scope, block, op, base, args[1], result, pos)
        if op == "load":
            self._arity(scope, op, args, 1)
            return block.load(self._operand(scope, args[0]), result, pos=pos)
        if op == "store":
            self._arity(scope, op, args, 2)
            addr, val = (self._operand(scope, a) for a in args)
            return block.store(addr, val, pos=pos)
        if op in _COMPARE_OPS:
            self._arity(scope, op, args, 2)
            x, y = (self._operand(scope, a) for a in args)
            return block.compare(_COMPARE_OPS[op], x, y, result, pos=pos)
        if op == "if":
            self._arity(scope, op, args, 3)
            cond = self._operand(scope, args[0])
            then, els = (self._block(scope, a) for a in args[1:])
            return block.branch(cond, then, els, pos=pos)
        if op == "jump":
            self._arity(scope, op, args, 1)
            return block.jump(self._block(scope, args[0]), pos=pos)
        if op == "return":
            return block.ret(*(self._operand(scope, a) for a in args), pos=pos)
        if op == "alloc":
            self._arity(scope, op, args, 1)
            if not _is_symbol(args[0]):
                raise IRLoadError(f"bad type {args[0]!r}", where=scope.where)
            return block.alloc(str(args[0]), result, pos=pos)
        if op == "call":
            if not args or not _is_symbol(args[0]):
                raise IRLoadError("call needs a callee name", where=scope.where)
            operands = [self._operand(scope, a) for a in args[1:]]
            return block.call(str(args[0]), *operands, name=result, pos=pos)
        if op == "other":
            operands = [self._operand(scope, a) for a in args]
            return block.other(*operands, name=result, pos=pos)
        raise IRLoadError(f"unknown opcode {op}", where=scope.where)

    def _field(self, scope: _FunctionScope, block: BasicBlock, op: str,
               base: Value, member: Any, result: str, pos: SourcePos) -> Value:
        struct_name = base.type if op == "field" else deref(base.type)
        struct = self.program.lookup_struct(struct_name) if struct_name else None
        if isinstance(member, int):
            index, fname = member, None
            if struct is not None:
                if not 0 <= index < len(struct.fields):
                    raise IRLoadError(f"{struct.name} has no field #{index}",
                                      where=scope.where)
                fname = struct.fields[index]
        elif _is_symbol(member):
            if struct is None:
                raise IRLoadError(
                    f"cannot select {member} from {base.ref()} of type "
                    f"{base.type or '?'}", where=scope.where)
            found = struct.index_of(str(member))
            if found is None:
                raise IRLoadError(f"{struct.name} has no field {member}",
                                  where=scope.where)
            index, fname = found, str(member)
        else:
            raise IRLoadError(f"bad field selector {member!r}", where=scope.where)

        ftype = ""
        if struct is not None:
            ftype = self._field_types[struct.name][index]
        if op == "field":
            return block.field(base, index, result, field_name=fname,
                               type=ftype, pos=pos)
        return block.field_addr(base, index, result, field_name=fname,
                                type=pointer_to(ftype) if ftype else "", pos=pos)

    def _operand(self, scope: _FunctionScope, atom: Any) -> Value:
        if isinstance(atom, int):
            return scope.fn.const(atom)
        if _is_symbol(atom):
            name = str(atom)
            value = scope.values.get(name)
            if value is not None:
                return value
            cval = self.program.lookup_const(name)
            if cval is not None:
                return scope.fn.const(cval)
            raise IRLoadError(f"undefined value {name}", where=scope.where)
        raise IRLoadError(f"bad operand {atom!r}", where=scope.where)

    def _block(self, scope: _FunctionScope, atom: Any) -> BasicBlock:
        target = scope.blocks.get(str(atom)) if _is_symbol(atom) else None
        if target is None:
            raise IRLoadError(f"unknown block {atom}", where=scope.where)
        return target


# ───────────────────────────────────────────────────────────────────
#  Convenience
# ───────────────────────────────────────────────────────────────────

def load_program(text: str, filename: str = "<string>") -> Program:
    """Parse and load an IR document held in memory."""
    return ProgramLoader(filename).load(parse_sexp(text, filename))


def load_file(path: str) -> Program:
    """Read and load the IR document at *path*."""
    try:
        with open(path, encoding="utf-8") as fh:
            text = fh.read()
    except OSError as exc:
        raise IRLoadError(f"cannot read IR file: {exc.strerror}",
                          where=path) from exc
    except UnicodeDecodeError as exc:
        raise IRLoadError(f"IR file is not valid UTF-8 (byte {exc.start})",
                          where=path) from exc
    return load_program(text, path)
