"""
The nimlet Evaluator: a tree-walking interpreter over nimlet_ast nodes.
"""
import logging
import math
import threading
from typing import Any, Dict, Iterator, List, Mapping, Optional, Tuple

from nimlet.nimlet_ast import (
    Assign, BinaryOp, Block, BlockStmt, Break, Call, Case, Continue, Defer,
    ExprStmt, FieldExpr, For, Identifier, If, IndexExpr, ListLiteral, Literal,
    MapLiteral, Node, ProcDecl, ProcExpr, Program, Return, UnaryOp, VarDecl,
    While,
)
from nimlet.nimlet_datatypes import (
    CallDepthExceeded, Cancelled, Closure, DivisionByZero, Environment,
    IndexOutOfRange, KeyNotFound, NativeRef, NotCallable, ScopeKind,
    ScriptError, ScriptTypeError, UndefinedVariable, check_int, type_name,
    values_equal,
)
from nimlet.nimlet_printer import display

logger = logging.getLogger(__name__)

DEFAULT_MAX_CALL_DEPTH = 200

TYPE_DEFAULTS = {
    "int": 0,
    "float": 0.0,
    "string": "",
    "bool": False,
}


class ReturnSignal(Exception):
    def __init__(self, value: Any, has_value: bool):
        self.value = value
        self.has_value = has_value


class BreakSignal(Exception):
    def __init__(self, label: Optional[str] = None):
        self.label = label


class ContinueSignal(Exception):
    pass


def is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def default_for(type_annotation: Optional[str]) -> Any:
    if type_annotation is None:
        return None
    if type_annotation in TYPE_DEFAULTS:
        return TYPE_DEFAULTS[type_annotation]
    if type_annotation.startswith("seq"):
        return []
    if type_annotation.startswith(("Table", "map")):
        return {}
    return None


class Evaluator:
    """Executes programs against an Environment chain.

    Names that are not bound anywhere on the chain fall back to the native
    registry. Natives are called as fn(context, args); the context is the
    capability object supplied by the runtime for the current hook.
    """

    def __init__(self, natives: Optional[Mapping[str, NativeRef]] = None,
                 max_call_depth: int = DEFAULT_MAX_CALL_DEPTH,
                 cancel_event: Optional[threading.Event] = None):
        self.natives: Mapping[str, NativeRef] = natives if natives is not None else {}
        self.max_call_depth = max_call_depth
        self.cancel_event = cancel_event
        self.context: Any = None
        self.call_stack: List[Dict[str, Any]] = []
        self.current_node: Optional[Node] = None

    # --- entry points ---
    def execute(self, program: Program, env: Environment) -> Any:
        """Run a whole program; the value is that of its last expression statement."""
        last = None
        deferred: List[Defer] = []
        try:
            for stmt in program.body:
                self._check_cancelled()
                if isinstance(stmt, Defer):
                    deferred.append(stmt)
                    continue
                value = self.exec(stmt, env)
                if isinstance(stmt, ExprStmt) and not stmt.discard:
                    last = value
        finally:
            self._run_deferred(deferred, env)
        return last

    def eval(self, node: Node, env: Environment) -> Any:
        self.current_node = node
        try:
            return self._eval(node, env)
        except ScriptError as e:
            raise e.at(node.line, node.col)

    def exec(self, node: Node, env: Environment) -> Any:
        self.current_node = node
        try:
            return self._exec(node, env)
        except ScriptError as e:
            raise e.at(node.line, node.col)

    def call(self, fn: Any, args: List[Any]) -> Any:
        """Invoke a script or native callable with already evaluated arguments."""
        name = getattr(fn, "name", None) or "<anonymous>"
        self._push_frame(name, args)
        _ok = False
        try:
            result = self._invoke(fn, args)
            _ok = True
        finally:
            if _ok:
                self._pop_frame()
        return result

    # --- statements ---
    def _check_cancelled(self):
        if self.cancel_event is not None and self.cancel_event.is_set():
            raise Cancelled()

    def _exec_block(self, block: Block, env: Environment):
        deferred: List[Defer] = []
        try:
            for stmt in block.body:
                self._check_cancelled()
                if isinstance(stmt, Defer):
                    deferred.append(stmt)
                    continue
                self.exec(stmt, env)
        finally:
            self._run_deferred(deferred, env)

    def _run_deferred(self, deferred: List[Defer], env: Environment):
        # last registered runs first
        for stmt in reversed(deferred):
            self.current_node = stmt
            self._exec_block(stmt.body, env.child())

    def _exec(self, node: Node, env: Environment) -> Any:
        match node:
            case ExprStmt(expr=expr):
                return self.eval(expr, env)

            case VarDecl(name=name, init=init, type_annotation=annotation):
                value = self.eval(init, env) if init is not None else default_for(annotation)
                env.declare(name, value)

            case Assign(target=target, value=value_node, op=None):
                self._assign(target, self.eval(value_node, env), env)

            case Assign(target=target, value=value_node, op=op):
                self._compound_assign(target, op, value_node, env)

            case If(cond=cond, then_block=then_block, else_block=else_block):
                if self._condition(self.eval(cond, env), "if condition"):
                    self._exec_block(then_block, env.child())
                elif else_block is not None:
                    self._exec_block(else_block, env.child())

            case While(cond=cond, body=body):
                while self._condition(self.eval(cond, env), "while condition"):
                    try:
                        self._exec_block(body, env.child())
                    except BreakSignal as sig:
                        if sig.label is not None:
                            raise
                        break
                    except ContinueSignal:
                        continue

            case For(iter_vars=names, iterable=iterable, body=body):
                for values in self._iterate(self.eval(iterable, env), len(names)):
                    scope = env.child()
                    for name, value in zip(names, values):
                        scope.declare(name, value)
                    try:
                        self._exec_block(body, scope)
                    except BreakSignal as sig:
                        if sig.label is not None:
                            raise
                        break
                    except ContinueSignal:
                        continue

            case BlockStmt(body=body, label=label):
                try:
                    self._exec_block(body, env.child())
                except BreakSignal as sig:
                    if sig.label is not None and sig.label != label:
                        raise

            case Case():
                self._case(node, env)

            case ProcDecl(name=name, params=params, body=body, return_type=return_type):
                env.declare(name, Closure(params, body, env, name, return_type is not None, return_type))

            case Return(value=value_node):
                if value_node is None:
                    raise ReturnSignal(None, False)
                raise ReturnSignal(self.eval(value_node, env), True)

            case Break(label=label):
                raise BreakSignal(label)

            case Continue():
                raise ContinueSignal()

            case Block():
                self._exec_block(node, env.child())

            case _:
                raise ScriptTypeError(f"cannot execute node {type(node).__name__}")
        return None

    def _assign(self, target: Node, value: Any, env: Environment):
        match target:
            case Identifier(name=name):
                env.assign(name, value)
            case IndexExpr(base=base_node, index=index_node):
                base = self.eval(base_node, env)
                index = self.eval(index_node, env)
                match base:
                    case list():
                        base[self._list_index(base, index)] = value
                    case dict():
                        if not isinstance(index, str):
                            raise ScriptTypeError(f"map keys must be strings, got {type_name(index)}")
                        base[index] = value
                    case _:
                        raise ScriptTypeError(f"cannot assign into an index of {type_name(base)}")
            case FieldExpr(base=base_node, name=name):
                base = self.eval(base_node, env)
                if not isinstance(base, dict):
                    raise ScriptTypeError(f"cannot assign field '{name}' on {type_name(base)}")
                base[name] = value
            case _:
                raise ScriptTypeError("invalid assignment target")

    def _compound_assign(self, target: Node, op: str, value_node: Node, env: Environment):
        """`t op= e`: the target's base and index are evaluated once."""
        match target:
            case Identifier(name=name):
                current = self.eval(target, env)
                env.assign(name, self.binary(op, current, self.eval(value_node, env)))
            case IndexExpr(base=base_node, index=index_node):
                base = self.eval(base_node, env)
                index = self.eval(index_node, env)
                current = self.index(base, index)
                value = self.binary(op, current, self.eval(value_node, env))
                if isinstance(base, list):
                    base[self._list_index(base, index)] = value
                elif isinstance(base, dict):
                    base[index] = value
                else:
                    raise ScriptTypeError(f"cannot assign into an index of {type_name(base)}")
            case FieldExpr(base=base_node, name=name):
                base = self.eval(base_node, env)
                if not isinstance(base, dict):
                    raise ScriptTypeError(f"cannot assign field '{name}' on {type_name(base)}")
                if name not in base:
                    raise KeyNotFound(name)
                base[name] = self.binary(op, base[name], self.eval(value_node, env))
            case _:
                raise ScriptTypeError("invalid assignment target")

    def _case(self, node: Case, env: Environment):
        subject = self.eval(node.subject, env)
        for branch in node.branches:
            for value_node in branch.values:
                if self._case_matches(subject, self.eval(value_node, env)):
                    self._exec_block(branch.body, env.child())
                    return
        for cond, body in node.elif_branches:
            if self._condition(self.eval(cond, env), "elif condition"):
                self._exec_block(body, env.child())
                return
        if node.else_block is not None:
            self._exec_block(node.else_block, env.child())

    def _case_matches(self, subject: Any, value: Any) -> bool:
        # `of 1..5:` tests membership
        if isinstance(value, range) and isinstance(subject, int) and not isinstance(subject, bool):
            return subject in value
        return values_equal(subject, value)

    def _condition(self, value: Any, what: str) -> bool:
        if not isinstance(value, bool):
            raise ScriptTypeError(f"{what} must be bool, got {type_name(value)}")
        return value

    def _iterate(self, value: Any, arity: int) -> Iterator[Tuple[Any, ...]]:
        match value:
            case range() | str() | list():
                # lists are iterated over a snapshot so the body may mutate them
                items = list(value) if isinstance(value, list) else value
                if arity == 1:
                    return ((item,) for item in items)
                return ((i, item) for i, item in enumerate(items))
            case dict():
                items = list(value.items())
                if arity == 1:
                    return ((k,) for k, _ in items)
                return iter(items)
            case int() if not isinstance(value, bool):
                if arity != 1:
                    raise ScriptTypeError("iterating over an int binds a single variable")
                return ((i,) for i in range(value))
            case _:
                raise ScriptTypeError(f"cannot iterate over {type_name(value)}")

    # --- expressions ---
    def _eval(self, node: Node, env: Environment) -> Any:
        match node:
            case Literal(value=value):
                return value

            case Identifier(name=name):
                owner = env.find_owner(name)
                if owner is not None:
                    return owner.bindings[name]
                native = self.natives.get(name)
                if native is not None:
                    return native
                raise UndefinedVariable(name)

            case BinaryOp(op="and", left=left, right=right):
                if not self._condition(self.eval(left, env), "'and' operand"):
                    return False
                return self._condition(self.eval(right, env), "'and' operand")

            case BinaryOp(op="or", left=left, right=right):
                if self._condition(self.eval(left, env), "'or' operand"):
                    return True
                return self._condition(self.eval(right, env), "'or' operand")

            case BinaryOp(op=op, left=left, right=right):
                return self.binary(op, self.eval(left, env), self.eval(right, env))

            case UnaryOp(op=op, operand=operand):
                return self.unary(op, self.eval(operand, env))

            case Call(callee=callee, args=arg_nodes):
                fn = self.eval(callee, env)
                args = [self.eval(a, env) for a in arg_nodes]
                return self.call(fn, args)

            case ListLiteral(elements=elements):
                return [self.eval(e, env) for e in elements]

            case MapLiteral(pairs=pairs):
                return {key: self.eval(v, env) for key, v in pairs}

            case IndexExpr(base=base, index=index):
                return self.index(self.eval(base, env), self.eval(index, env))

            case FieldExpr(base=base_node, name=name):
                base = self.eval(base_node, env)
                if isinstance(base, dict):
                    if name == "len":
                        return len(base)
                    if name not in base:
                        raise KeyNotFound(name)
                    return base[name]
                # x.len, s.toUpper: a field on a non-map calls the named proc
                fn = self._resolve(name, env)
                if not isinstance(fn, (Closure, NativeRef)):
                    raise ScriptTypeError(f"{type_name(base)} has no field '{name}'")
                return self.call(fn, [base])

            case ProcExpr(params=params, body=body, return_type=return_type):
                return Closure(params, body, env, None, return_type is not None, return_type)

            case _:
                raise ScriptTypeError(f"cannot evaluate node {type(node).__name__}")

    def _resolve(self, name: str, env: Environment) -> Any:
        owner = env.find_owner(name)
        if owner is not None:
            return owner.bindings[name]
        return self.natives.get(name)

    # --- operators ---
    def binary(self, op: str, a: Any, b: Any) -> Any:
        match op:
            case "==":
                return values_equal(a, b)
            case "!=":
                return not values_equal(a, b)
            case "<" | "<=" | ">" | ">=":
                return self._compare(op, a, b)
            case "&":
                return display(a) + display(b)
            case ".." | "..<":
                if not (isinstance(a, int) and isinstance(b, int)) or isinstance(a, bool) or isinstance(b, bool):
                    raise ScriptTypeError(f"range bounds must be int, got {type_name(a)} and {type_name(b)}")
                return range(a, b + 1) if op == ".." else range(a, b)
            case "+" if isinstance(a, list) and isinstance(b, list):
                return a + b
        if not (is_number(a) and is_number(b)):
            raise ScriptTypeError(f"unsupported operand types for '{op}': {type_name(a)} and {type_name(b)}")
        both_int = isinstance(a, int) and isinstance(b, int)
        match op:
            case "+":
                result = a + b
            case "-":
                result = a - b
            case "*":
                result = a * b
            case "/":
                if b == 0:
                    raise DivisionByZero()
                return float(a) / float(b)
            case "div":
                if not both_int:
                    raise ScriptTypeError(f"'div' requires int operands, got {type_name(a)} and {type_name(b)}")
                if b == 0:
                    raise DivisionByZero()
                q = abs(a) // abs(b)
                result = q if (a < 0) == (b < 0) else -q
            case "mod" | "%":
                if b == 0:
                    raise DivisionByZero()
                if not both_int:
                    return math.fmod(a, b)
                r = abs(a) % abs(b)
                result = r if a >= 0 else -r
            case _:
                raise ScriptTypeError(f"unknown operator '{op}'")
        if both_int:
            return check_int(result, op)
        return result

    def _compare(self, op: str, a: Any, b: Any) -> bool:
        if not ((is_number(a) and is_number(b)) or (isinstance(a, str) and isinstance(b, str))):
            raise ScriptTypeError(f"cannot order {type_name(a)} and {type_name(b)}")
        match op:
            case "<":
                return a < b
            case "<=":
                return a <= b
            case ">":
                return a > b
            case _:
                return a >= b

    def unary(self, op: str, value: Any) -> Any:
        match op:
            case "-":
                if not is_number(value):
                    raise ScriptTypeError(f"cannot negate {type_name(value)}")
                if isinstance(value, int):
                    return check_int(-value, "-")
                return -value
            case "not":
                return not self._condition(value, "'not' operand")
            case "$":
                return display(value)
        raise ScriptTypeError(f"unknown unary operator '{op}'")

    def _list_index(self, seq: Any, index: Any) -> int:
        if not isinstance(index, int) or isinstance(index, bool):
            raise ScriptTypeError(f"index must be int, got {type_name(index)}")
        if index < 0 or index >= len(seq):
            raise IndexOutOfRange(index, len(seq))
        return index

    def index(self, base: Any, index: Any) -> Any:
        match base:
            case dict():
                if not isinstance(index, str):
                    raise ScriptTypeError(f"map keys must be strings, got {type_name(index)}")
                if index not in base:
                    raise KeyNotFound(index)
                return base[index]
            case list() | str() if isinstance(index, range):
                start = max(index.start, 0)
                return base[start:max(index.stop, start)]
            case list() | str() | range():
                return base[self._list_index(base, index)]
            case _:
                raise ScriptTypeError(f"cannot index into {type_name(base)}")

    # --- calls ---
    def _push_frame(self, name: str, args: List[Any]):
        self.call_stack.append({"name": name, "args": args})

    def _pop_frame(self):
        if self.call_stack:
            self.call_stack.pop()

    def _invoke(self, fn: Any, args: List[Any]) -> Any:
        match fn:
            case Closure():
                return self._call_closure(fn, args)
            case NativeRef():
                logger.debug("native call %s argc=%d", fn.name, len(args))
                return fn.fn(self.context, args)
            case _:
                raise NotCallable(type_name(fn))

    def _call_closure(self, fn: Closure, args: List[Any]) -> Any:
        if len(args) != len(fn.params):
            raise ScriptTypeError(
                f"proc {fn.name or '<anonymous>'} expects {len(fn.params)} arguments, got {len(args)}"
            )
        if len(self.call_stack) > self.max_call_depth:
            raise CallDepthExceeded(self.max_call_depth)
        env = Environment(ScopeKind.FUNCTION, fn.closure)
        for name, value in zip(fn.params, args):
            env.declare(name, value)
        if fn.has_result:
            env.declare("result", default_for(fn.result_type))
        try:
            self._exec_block(fn.body, env)
        except ReturnSignal as ret:
            if ret.has_value or not fn.has_result:
                return ret.value
        if fn.has_result:
            return env.bindings["result"]
        return None
