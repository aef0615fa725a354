"""
tagscope.dominators
===================

Dominator trees for :class:`tagscope.ir.Function` bodies.

The immediate dominators are computed with the Cooper–Harvey–Kennedy
iterative algorithm [1] over a reverse-postorder numbering of the blocks
reachable from the entry.  The tree is then numbered with a pre/post
depth-first walk so that ``dominates(a, b)`` is a single ancestor test:

    a dom b  ⇔  pre[a] ≤ pre[b]  and  post[b] ≤ post[a]

Blocks that are unreachable from the entry have no immediate dominator;
such a block is dominated only by itself.

References
----------
[1] Cooper, Harvey, Kennedy – "A Simple, Fast Dominance Algorithm", 2001.
"""

from __future__ import annotations

from collections import defaultdict
from typing import Dict, List, Optional, Set, Tuple

from tagscope.ir import BasicBlock, Function


class DominatorTree:
    """Dominator tree of one function.

    Attributes after .compute():
        idom     : Dict[BasicBlock, BasicBlock]  — immediate dominator
        children : Dict[BasicBlock, List[BasicBlock]]
        rpo      : List[BasicBlock]  — reachable blocks in reverse postorder

    The entry block's immediate dominator is itself.
    """

    def __init__(self, function: Function) -> None:
        self.function = function
        self.idom: Dict[BasicBlock, BasicBlock] = {}
        self.children: Dict[BasicBlock, List[BasicBlock]] = defaultdict(list)
        self.rpo: List[BasicBlock] = []
        self._pre: Dict[BasicBlock, int] = {}
        self._post: Dict[BasicBlock, int] = {}
        self._computed = False

    # ---- public API --------------------------------------------------

    def compute(self) -> "DominatorTree":
        """Compute immediate dominators and the tree numbering."""
        if self._computed:
            return self
        entry = self.function.entry
        if entry is not None:
            self._compute_idom(entry)
            self._build_tree()
            self._number(entry)
        self._computed = True
        return self

    def reachable(self, block: BasicBlock) -> bool:
        self.compute()
        return block in self._pre

    def dominates(self, a: BasicBlock, b: BasicBlock) -> bool:
        """Return True if *a* dominates *b*.  A block dominates itself."""
        if a is b:
            return True
        self.compute()
        pa = self._pre.get(a)
        pb = self._pre.get(b)
        if pa is None or pb is None:
            return False
        return pa <= pb and self._post[b] <= self._post[a]

    def strictly_dominates(self, a: BasicBlock, b: BasicBlock) -> bool:
        return a is not b and self.dominates(a, b)

    def immediate_dominator(self, block: BasicBlock) -> Optional[BasicBlock]:
        """The immediate dominator of *block*, ``None`` for the entry and
        for unreachable blocks."""
        self.compute()
        parent = self.idom.get(block)
        if parent is None or parent is block:
            return None
        return parent

    def all_dominators(self, block: BasicBlock) -> Set[BasicBlock]:
        """All blocks dominating *block*, itself included."""
        self.compute()
        result: Set[BasicBlock] = {block}
        cur = block
        while True:
            parent = self.idom.get(cur)
            if parent is None or parent is cur:
                return result
            result.add(parent)
            cur = parent

    # ---- internals: Cooper–Harvey–Kennedy ------------------------------

    def _compute_idom(self, entry: BasicBlock) -> None:
        finish: List[BasicBlock] = []
        seen: Set[BasicBlock] = {entry}
        stack: List[Tuple[BasicBlock, int]] = [(entry, 0)]
        while stack:
            node, idx = stack[-1]
            succs = node.succs
            if idx < len(succs):
                stack[-1] = (node, idx + 1)
                child = succs[idx]
                if child not in seen:
                    seen.add(child)
                    stack.append((child, 0))
            else:
                stack.pop()
                finish.append(node)

        self.rpo = list(reversed(finish))
        order = {b: i for i, b in enumerate(self.rpo)}
        idom: Dict[BasicBlock, BasicBlock] = {entry: entry}

        def intersect(b1: BasicBlock, b2: BasicBlock) -> BasicBlock:
            while b1 is not b2:
                while order[b1] > order[b2]:
                    b1 = idom[b1]
                while order[b2] > order[b1]:
                    b2 = idom[b2]
            return b1

        changed = True
        while changed:
            changed = False
            for block in self.rpo[1:]:
                new_idom: Optional[BasicBlock] = None
                for p in block.preds:
                    if p not in idom:
                        continue
                    new_idom = p if new_idom is None else intersect(p, new_idom)
                if new_idom is not None and idom.get(block) is not new_idom:
                    idom[block] = new_idom
                    changed = True
        self.idom = idom

    def _build_tree(self) -> None:
        self.children = defaultdict(list)
        for block in self.rpo:
            parent = self.idom.get(block)
            if parent is not None and parent is not block:
                self.children[parent].append(block)

    def _number(self, entry: BasicBlock) -> None:
        counter = 0
        stack: List[Tuple[BasicBlock, int]] = [(entry, 0)]
        self._pre[entry] = counter
        counter += 1
        while stack:
            node, idx = stack[-1]
            kids = self.children.get(node, [])
            if idx < len(kids):
                stack[-1] = (node, idx + 1)
                child = kids[idx]
                self._pre[child] = counter
                counter += 1
                stack.append((child, 0))
            else:
                stack.pop()
                self._post[node] = counter
                counter += 1
