"""State threaded through one block tree traversal."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set

from .placement import Selector
from .types import Block, MutationResult


@dataclass
class TraversalContext:
    """Running occurrence counter and target set for one add-link pass.

    ``total`` and ``targets`` stay ``None`` until the first literal with a
    match is reached; at that point the whole tree is counted once so that
    ``last`` and ``all`` resolve against the grand total.
    """

    roots: List[Block]
    anchor_text: str
    selector: Selector
    url: str
    attributes: Dict[str, str]
    if_exists: str
    result: MutationResult
    counter: int = 0
    total: Optional[int] = None
    targets: Optional[Set[int]] = field(default=None)

    @property
    def resolved(self) -> bool:
        return self.targets is not None
