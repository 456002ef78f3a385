"""
A pretty-printer for nimlet ASTs and values.

Printer.pformat renders AST nodes back to source that parses to an equal
tree, and renders runtime values in their display form. The module-level
display() function is the stringification used by `$`, `&` and echo.
"""
from typing import Any, List, Optional

from nimlet.nimlet_ast import (
    Assign, BinaryOp, Block, BlockStmt, Break, Call, Case, Continue, Defer,
    ExprStmt, FieldExpr, For, Identifier, If, IndexExpr, ListLiteral, Literal,
    MapLiteral, Node, ProcDecl, ProcExpr, Program, Return, UnaryOp, VarDecl,
    While,
)
from nimlet.nimlet_datatypes import Closure, NativeRef
from nimlet.nimlet_tokenizer import KEYWORDS

BINARY_PRECEDENCE = {
    "or": 1,
    "and": 2,
    "==": 3, "!=": 3,
    "<": 4, "<=": 4, ">": 4, ">=": 4,
    "..": 5, "..<": 5,
    "+": 6, "-": 6, "&": 6,
    "*": 7, "/": 7, "%": 7, "mod": 7, "div": 7,
}
UNARY_PRECEDENCE = 8
ATOM_PRECEDENCE = 9

QUOTE_ESCAPES = {
    "\\": "\\\\",
    '"': '\\"',
    "\n": "\\n",
    "\t": "\\t",
    "\r": "\\r",
    "\0": "\\0",
}


def quote(text: str) -> str:
    return '"' + "".join(QUOTE_ESCAPES.get(ch, ch) for ch in text) + '"'


def is_identifier(text: str) -> bool:
    return bool(text) and (text[0].isalpha() or text[0] == "_") \
        and all(ch.isalnum() or ch == "_" for ch in text) and text not in KEYWORDS


def format_float(value: float) -> str:
    if value != value:
        return "nan"
    if value in (float("inf"), float("-inf")):
        return "inf" if value > 0 else "-inf"
    return repr(value)


def display(value: Any, nested: bool = False, _seen: Optional[set] = None) -> str:
    """Stringify a value. Strings are raw at the top level and quoted inside containers."""
    match value:
        case None:
            return "nil"
        case bool():
            return "true" if value else "false"
        case int():
            return str(value)
        case float():
            return format_float(value)
        case str():
            return quote(value) if nested else value
        case range():
            return f"{value.start}..<{value.stop}"
        case Closure():
            return f"<proc {value.name or 'anonymous'}>"
        case NativeRef():
            return f"<native {value.name}>"
    seen = _seen if _seen is not None else set()
    if id(value) in seen:
        return "[...]" if isinstance(value, list) else "{...}"
    seen.add(id(value))
    try:
        match value:
            case list():
                return "[" + ", ".join(display(v, True, seen) for v in value) + "]"
            case dict():
                parts = []
                for k, v in value.items():
                    key = k if is_identifier(k) else quote(k)
                    parts.append(f"{key}: {display(v, True, seen)}")
                return "{" + ", ".join(parts) + "}"
            case _:
                return repr(value)
    finally:
        seen.discard(id(value))


class Printer:
    """Formats nimlet nodes into valid source and values into display strings."""

    def __init__(self, indent_width=2):
        self._indent_char = " " * indent_width
        self._handlers = self._create_handlers()

    def pformat(self, obj, level=0):
        """Public entry point to format an object."""
        handler = self._handlers.get(type(obj))
        if handler is not None:
            return handler(obj, level)
        if isinstance(obj, Node):
            return self._expr(obj, 0, level)
        return display(obj, nested=True)

    def _create_handlers(self):
        return {
            Program: self._pformat_program,
            Block: self._pformat_block,
            VarDecl: self._pformat_statement,
            Assign: self._pformat_statement,
            ExprStmt: self._pformat_statement,
            If: self._pformat_statement,
            While: self._pformat_statement,
            For: self._pformat_statement,
            BlockStmt: self._pformat_statement,
            Case: self._pformat_statement,
            Defer: self._pformat_statement,
            ProcDecl: self._pformat_statement,
            Return: self._pformat_statement,
            Break: self._pformat_statement,
            Continue: self._pformat_statement,
        }

    # --- statements ---
    def _pformat_program(self, program: Program, level):
        return "\n".join(self._statement(s, level) for s in program.body) + "\n"

    def _pformat_block(self, block: Block, level):
        return "\n".join(self._statement(s, level) for s in block.body)

    def _pformat_statement(self, node, level):
        return self._statement(node, level)

    def _suite(self, block: Block, level) -> str:
        return ":\n" + self._pformat_block(block, level + 1)

    def _statement(self, node: Node, level: int) -> str:
        pad = self._indent_char * level
        match node:
            case VarDecl(name=name, init=init, keyword=keyword, type_annotation=annotation):
                text = f"{keyword} {name}"
                if annotation:
                    text += f": {annotation}"
                if init is not None:
                    text += f" = {self._expr(init, 0, level)}"
                return pad + text
            case Assign(target=target, value=value, op=op):
                return pad + f"{self._expr(target, 0, level)} {op or ''}= {self._expr(value, 0, level)}"
            case ExprStmt(expr=expr, discard=discard):
                return pad + ("discard " if discard else "") + self._expr(expr, 0, level)
            case If():
                return self._if(node, level, "if")
            case While(cond=cond, body=body):
                return pad + f"while {self._expr(cond, 0, level)}" + self._suite(body, level)
            case For(iter_vars=names, iterable=iterable, body=body):
                return pad + f"for {', '.join(names)} in {self._expr(iterable, 0, level)}" + self._suite(body, level)
            case BlockStmt(body=body, label=label):
                return pad + ("block " + label if label else "block") + self._suite(body, level)
            case Case():
                return self._case(node, level)
            case Defer(body=body):
                return pad + "defer" + self._suite(body, level)
            case ProcDecl(name=name, params=params, body=body, return_type=return_type, param_types=types):
                head = f"proc {name}({self._params(params, types)})"
                if return_type:
                    head += f": {return_type}"
                return pad + head + self._proc_body(body, level)
            case Return(value=value):
                if value is None:
                    return pad + "return"
                return pad + f"return {self._expr(value, 0, level)}"
            case Break(label=label):
                return pad + ("break " + label if label else "break")
            case Continue():
                return pad + "continue"
            case Block():
                return pad + "block" + self._suite(node, level)
            case _:
                return pad + self._expr(node, 0, level)

    def _if(self, node: If, level: int, keyword: str) -> str:
        pad = self._indent_char * level
        text = pad + f"{keyword} {self._expr(node.cond, 0, level)}" + self._suite(node.then_block, level)
        else_block = node.else_block
        if else_block is None:
            return text
        if len(else_block.body) == 1 and isinstance(else_block.body[0], If):
            return text + "\n" + self._if(else_block.body[0], level, "elif")
        return text + "\n" + pad + "else" + self._suite(else_block, level)

    def _case(self, node: Case, level: int) -> str:
        pad = self._indent_char * level
        lines = [pad + f"case {self._expr(node.subject, 0, level)}"]
        for branch in node.branches:
            values = ", ".join(self._expr(v, 0, level) for v in branch.values)
            lines.append(pad + f"of {values}" + self._suite(branch.body, level))
        for cond, body in node.elif_branches:
            lines.append(pad + f"elif {self._expr(cond, 0, level)}" + self._suite(body, level))
        if node.else_block is not None:
            lines.append(pad + "else" + self._suite(node.else_block, level))
        return "\n".join(lines)

    def _params(self, params, types) -> str:
        parts = []
        for i, name in enumerate(params):
            annotation = types[i] if i < len(types) else None
            parts.append(f"{name}: {annotation}" if annotation else name)
        return ", ".join(parts)

    def _proc_body(self, body: Block, level: int) -> str:
        if len(body.body) == 1 and isinstance(body.body[0], Return) and body.body[0].value is not None:
            return " = " + self._expr(body.body[0].value, 0, level)
        return " =\n" + self._pformat_block(body, level + 1)

    # --- expressions ---
    def _precedence(self, node: Node) -> int:
        match node:
            case BinaryOp(op=op):
                return BINARY_PRECEDENCE.get(op, 1)
            case UnaryOp():
                return UNARY_PRECEDENCE
            case Literal(value=value) if isinstance(value, (int, float)) and not isinstance(value, bool) and value < 0:
                return UNARY_PRECEDENCE
            case ProcExpr():
                return 0
            case _:
                return ATOM_PRECEDENCE

    def _expr(self, node: Node, min_prec: int, level: int) -> str:
        text = self._expr_text(node, level)
        if self._precedence(node) < min_prec:
            return f"({text})"
        return text

    def _expr_text(self, node: Node, level: int) -> str:
        match node:
            case Literal(value=value):
                if isinstance(value, str):
                    return quote(value)
                return display(value)
            case Identifier(name=name):
                return name
            case BinaryOp(op=op, left=left, right=right):
                prec = BINARY_PRECEDENCE.get(op, 1)
                return f"{self._expr(left, prec, level)} {op} {self._expr(right, prec + 1, level)}"
            case UnaryOp(op=op, operand=operand):
                sep = " " if op == "not" else ""
                return f"{op}{sep}{self._expr(operand, UNARY_PRECEDENCE, level)}"
            case Call(callee=callee, args=args):
                return f"{self._expr(callee, ATOM_PRECEDENCE, level)}({self._args(args, level)})"
            case IndexExpr(base=base, index=index):
                return f"{self._expr(base, ATOM_PRECEDENCE, level)}[{self._expr(index, 0, level)}]"
            case FieldExpr(base=base, name=name):
                return f"{self._expr(base, ATOM_PRECEDENCE, level)}.{name}"
            case ListLiteral(elements=elements):
                return f"[{self._args(elements, level)}]"
            case MapLiteral(pairs=pairs):
                items: List[str] = []
                for key, value in pairs:
                    shown = key if is_identifier(key) else quote(key)
                    items.append(f"{shown}: {self._expr(value, 0, level)}")
                return "{" + ", ".join(items) + "}"
            case ProcExpr(params=params, body=body, return_type=return_type):
                head = f"proc({', '.join(params)})"
                if return_type:
                    head += f": {return_type}"
                return head + self._proc_body(body, level)
            case _:
                return repr(node)

    def _args(self, args, level) -> str:
        return ", ".join(self._expr(a, 0, level) for a in args)
