"""
AST node types produced by the parser.

Nodes are immutable. Child sequences are tuples and source positions are
left out of equality, so two parses of equivalent source compare equal.
"""
from dataclasses import dataclass, field
from typing import Any, Optional, Tuple


def _pos():
    return field(default=0, compare=False, repr=False)


@dataclass(frozen=True)
class Node:
    pass


# --- Expressions ---

@dataclass(frozen=True)
class Literal(Node):
    value: Any
    line: int = _pos()
    col: int = _pos()


@dataclass(frozen=True)
class Identifier(Node):
    name: str
    line: int = _pos()
    col: int = _pos()


@dataclass(frozen=True)
class BinaryOp(Node):
    op: str
    left: Node
    right: Node
    line: int = _pos()
    col: int = _pos()


@dataclass(frozen=True)
class UnaryOp(Node):
    op: str
    operand: Node
    line: int = _pos()
    col: int = _pos()


@dataclass(frozen=True)
class Call(Node):
    callee: Node
    args: Tuple[Node, ...]
    line: int = _pos()
    col: int = _pos()


@dataclass(frozen=True)
class ListLiteral(Node):
    elements: Tuple[Node, ...]
    line: int = _pos()
    col: int = _pos()


@dataclass(frozen=True)
class MapLiteral(Node):
    pairs: Tuple[Tuple[str, Node], ...]
    line: int = _pos()
    col: int = _pos()


@dataclass(frozen=True)
class IndexExpr(Node):
    base: Node
    index: Node
    line: int = _pos()
    col: int = _pos()


@dataclass(frozen=True)
class FieldExpr(Node):
    base: Node
    name: str
    line: int = _pos()
    col: int = _pos()


@dataclass(frozen=True)
class ProcExpr(Node):
    """Anonymous proc: `proc(x, y) = x + y`."""
    params: Tuple[str, ...]
    body: 'Block'
    return_type: Optional[str] = None
    line: int = _pos()
    col: int = _pos()


# --- Statements ---

@dataclass(frozen=True)
class Block(Node):
    body: Tuple[Node, ...]
    line: int = _pos()
    col: int = _pos()


@dataclass(frozen=True)
class Program(Node):
    body: Tuple[Node, ...]
    line: int = _pos()
    col: int = _pos()


@dataclass(frozen=True)
class VarDecl(Node):
    name: str
    init: Optional[Node]
    keyword: str = "var"
    type_annotation: Optional[str] = None
    line: int = _pos()
    col: int = _pos()


@dataclass(frozen=True)
class Assign(Node):
    target: Node  # Identifier, IndexExpr or FieldExpr
    value: Node
    op: Optional[str] = None  # "+" for `+=`, None for plain `=`
    line: int = _pos()
    col: int = _pos()


@dataclass(frozen=True)
class ExprStmt(Node):
    expr: Node
    discard: bool = False
    line: int = _pos()
    col: int = _pos()


@dataclass(frozen=True)
class If(Node):
    cond: Node
    then_block: Block
    else_block: Optional[Block] = None
    line: int = _pos()
    col: int = _pos()


@dataclass(frozen=True)
class While(Node):
    cond: Node
    body: Block
    line: int = _pos()
    col: int = _pos()


@dataclass(frozen=True)
class For(Node):
    iter_vars: Tuple[str, ...]
    iterable: Node
    body: Block
    line: int = _pos()
    col: int = _pos()


@dataclass(frozen=True)
class BlockStmt(Node):
    """`block:` or `block name:` suite; `break` leaves it early."""
    body: Block
    label: Optional[str] = None
    line: int = _pos()
    col: int = _pos()


@dataclass(frozen=True)
class OfBranch(Node):
    values: Tuple[Node, ...]
    body: Block
    line: int = _pos()
    col: int = _pos()


@dataclass(frozen=True)
class Case(Node):
    """`case x` with `of` branches, then optional `elif` branches and `else`."""
    subject: Node
    branches: Tuple[OfBranch, ...]
    elif_branches: Tuple[Tuple[Node, Block], ...] = ()
    else_block: Optional[Block] = None
    line: int = _pos()
    col: int = _pos()


@dataclass(frozen=True)
class Defer(Node):
    """Runs its body when the enclosing block is left, however it is left."""
    body: Block
    line: int = _pos()
    col: int = _pos()


@dataclass(frozen=True)
class ProcDecl(Node):
    name: str
    params: Tuple[str, ...]
    body: Block
    return_type: Optional[str] = None
    param_types: Tuple[Optional[str], ...] = ()
    line: int = _pos()
    col: int = _pos()


@dataclass(frozen=True)
class Return(Node):
    value: Optional[Node] = None
    line: int = _pos()
    col: int = _pos()


@dataclass(frozen=True)
class Break(Node):
    label: Optional[str] = None
    line: int = _pos()
    col: int = _pos()


@dataclass(frozen=True)
class Continue(Node):
    line: int = _pos()
    col: int = _pos()
