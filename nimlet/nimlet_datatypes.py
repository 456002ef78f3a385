"""
Defines the core data types for the nimlet runtime.

Script values are plain Python objects (None, bool, int, float, str, list,
dict, range) plus the two callable kinds defined here, Closure and
NativeRef. Environments form the lexical scope chain, and the error
classes below make up the complete error taxonomy reported to hosts.
"""
import collections.abc
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Optional, Tuple

INT_MIN = -(2 ** 63)
INT_MAX = 2 ** 63 - 1


# =================================================================
# Errors
# =================================================================

class ScriptError(Exception):
    """Base class for every error a script can produce."""
    kind = "ScriptError"

    def __init__(self, message: str, line: Optional[int] = None, col: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.line = line
        self.col = col

    def at(self, line: Optional[int], col: Optional[int]) -> 'ScriptError':
        """Attach a source location unless a more precise one is already set."""
        if self.line is None:
            self.line = line
            self.col = col
        return self

    def __str__(self):
        if self.line is not None:
            return f"{self.message} (line {self.line}, col {self.col})"
        return self.message


class LexError(ScriptError):
    kind = "LexError"

    def __init__(self, line: int, col: int, message: str):
        super().__init__(message, line, col)


class ParseError(ScriptError):
    kind = "ParseError"

    def __init__(self, line: int, col: int, expected: str, found: str):
        super().__init__(f"expected {expected}, found {found}", line, col)
        self.expected = expected
        self.found = found


class ScriptRuntimeError(ScriptError):
    kind = "RuntimeError"


class UndefinedVariable(ScriptRuntimeError):
    kind = "UndefinedVariable"

    def __init__(self, name: str):
        super().__init__(f"undefined variable '{name}'")
        self.name = name


class ScriptTypeError(ScriptRuntimeError):
    kind = "TypeError"


class NotCallable(ScriptTypeError):
    kind = "NotCallable"

    def __init__(self, type_name: str):
        super().__init__(f"value of type {type_name} is not callable")
        self.type_name = type_name


class KeyNotFound(ScriptRuntimeError):
    kind = "KeyNotFound"

    def __init__(self, key: str):
        super().__init__(f"key not found: {key!r}")
        self.key = key


class IndexOutOfRange(ScriptRuntimeError):
    kind = "IndexOutOfRange"

    def __init__(self, index: int, length: int):
        super().__init__(f"index {index} out of range for length {length}")
        self.index = index
        self.length = length


class NativeArgError(ScriptRuntimeError):
    kind = "NativeArgError"

    def __init__(self, function_name: str, message: str):
        super().__init__(f"{function_name}: {message}")
        self.function_name = function_name
        self.detail = message


class DivisionByZero(ScriptRuntimeError):
    kind = "DivisionByZero"

    def __init__(self):
        super().__init__("division by zero")


class ArithmeticOverflow(ScriptRuntimeError):
    kind = "ArithmeticOverflow"

    def __init__(self, op: str):
        super().__init__(f"integer overflow in '{op}'")
        self.op = op


class CallDepthExceeded(ScriptRuntimeError):
    kind = "CallDepthExceeded"

    def __init__(self, limit: int):
        super().__init__(f"maximum call depth of {limit} exceeded")
        self.limit = limit


class Cancelled(ScriptRuntimeError):
    kind = "Cancelled"

    def __init__(self):
        super().__init__("execution cancelled by host")


# =================================================================
# Environments
# =================================================================

class ScopeKind(Enum):
    GLOBAL = "global"
    BLOCK = "block"
    FUNCTION = "function"


class Environment:
    """One link in the lexical scope chain.

    declare always writes locally. assign overwrites the nearest existing
    binding on the chain and otherwise creates a local one; it never
    creates a new binding in an ancestor, so a hook that assigns an unknown
    name cannot leak it into Global.
    """
    __slots__ = ("kind", "parent", "bindings")

    def __init__(self, kind: ScopeKind = ScopeKind.BLOCK, parent: Optional['Environment'] = None):
        self.kind = kind
        self.parent = parent
        self.bindings: Dict[str, Any] = {}

    def child(self, kind: ScopeKind = ScopeKind.BLOCK) -> 'Environment':
        return Environment(kind, self)

    def find_owner(self, name: str) -> Optional['Environment']:
        """Nearest environment on the chain (self first) that binds name."""
        env = self
        while env is not None:
            if name in env.bindings:
                return env
            env = env.parent
        return None

    def declare(self, name: str, value: Any):
        self.bindings[name] = value

    def read(self, name: str) -> Any:
        owner = self.find_owner(name)
        if owner is None:
            raise UndefinedVariable(name)
        return owner.bindings[name]

    def assign(self, name: str, value: Any):
        owner = self.find_owner(name)
        (owner or self).bindings[name] = value

    def __contains__(self, name: str) -> bool:
        return self.find_owner(name) is not None

    def __repr__(self):
        return f"<Environment {self.kind.value} {sorted(self.bindings)}>"


# =================================================================
# Callables
# =================================================================

@dataclass(eq=False)
class Closure:
    """A script procedure together with the environment it was defined in."""
    params: Tuple[str, ...]
    body: Any  # nimlet_ast.Block
    closure: Environment
    name: Optional[str] = None
    has_result: bool = False
    result_type: Optional[str] = None

    def __repr__(self):
        return f"<proc {self.name or 'anonymous'}>"


@dataclass(eq=False)
class NativeRef:
    """A host function registered under a script-visible name."""
    name: str
    fn: Callable[..., Any] = field(repr=False)

    def __repr__(self):
        return f"<native {self.name}>"


# =================================================================
# Value helpers
# =================================================================

def type_name(value: Any) -> str:
    """The script-level kind of a value."""
    match value:
        case None:
            return "nil"
        case bool():
            return "bool"
        case int():
            return "int"
        case float():
            return "float"
        case str():
            return "string"
        case list():
            return "list"
        case dict():
            return "map"
        case range():
            return "range"
        case Closure():
            return "proc"
        case NativeRef():
            return "native"
        case _:
            return type(value).__name__


def check_int(value: int, op: str) -> int:
    if value < INT_MIN or value > INT_MAX:
        raise ArithmeticOverflow(op)
    return value


def to_value(obj: Any) -> Any:
    """Convert a host-side Python object into a script value."""
    match obj:
        case None | bool() | float() | str() | range() | Closure() | NativeRef():
            return obj
        case int():
            return check_int(obj, "conversion")
        case list() | tuple():
            return [to_value(v) for v in obj]
        case collections.abc.Mapping():
            return {str(k): to_value(v) for k, v in obj.items()}
        case _:
            raise ScriptTypeError(f"unsupported host value of type {type(obj).__name__}")


def values_equal(a: Any, b: Any) -> bool:
    """Structural, kind-aware equality.

    Int and Float compare numerically; Bool never equals a number; lists and
    maps compare element-wise; callables compare by identity.
    """
    match a, b:
        case bool(), bool():
            return a == b
        case (bool(), _) | (_, bool()):
            return False
        case (int() | float()), (int() | float()):
            return a == b
        case str(), str():
            return a == b
        case None, None:
            return True
        case list(), list():
            return len(a) == len(b) and all(values_equal(x, y) for x, y in zip(a, b))
        case dict(), dict():
            return a.keys() == b.keys() and all(values_equal(a[k], b[k]) for k in a)
        case range(), range():
            return a == b
        case _:
            return a is b
