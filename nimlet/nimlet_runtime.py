"""
The nimlet runtime: native registry, standard library and lifecycle driver.

A Runtime owns one Global environment. Hooks are loaded independently,
then run against Global (init) or a fresh child of Global (every other
lifecycle), so declarations made by init persist while declarations made
by update or render vanish when the invocation ends.
"""
import inspect
import logging
import math
import random
import re
import sys
import threading
from abc import ABC
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Literal, Mapping, Optional

import pystache

from nimlet.nimlet_ast import Program
from nimlet.nimlet_datatypes import (
    CallDepthExceeded, Environment, IndexOutOfRange, KeyNotFound, NativeArgError,
    NativeRef, ScopeKind, ScriptError, UndefinedVariable, check_int, to_value,
    type_name, values_equal,
)
from nimlet.nimlet_interpreter import DEFAULT_MAX_CALL_DEPTH, Evaluator, is_number
from nimlet.nimlet_parser import parse
from nimlet.nimlet_printer import display
from nimlet.nimlet_tokenizer import tokenize

logger = logging.getLogger(__name__)

LIFECYCLES = ("init", "update", "render", "input", "shutdown")

# Python frames used per script-level call; sizes the interpreter recursion limit.
FRAMES_PER_CALL = 16

CONSTANTS = {
    "PI": math.pi,
    "TAU": math.tau,
    "E": math.e,
}

INT_PATTERN = re.compile(r"[+-]?\d+")
FLOAT_PATTERN = re.compile(r"[+-]?(\d+\.\d*|\.\d+|\d+(\.\d*)?[eE][+-]?\d+)")


def camel_case(snake: str) -> str:
    head, *rest = snake.split("_")
    return head + "".join(part[:1].upper() + part[1:] for part in rest)


def parse_scalar(text: str) -> Any:
    """Front matter scalars: integers, floats and booleans are typed, anything else stays a string."""
    s = text.strip()
    if INT_PATTERN.fullmatch(s):
        value = int(s)
        try:
            return check_int(value, "front matter")
        except ScriptError:
            return text
    if FLOAT_PATTERN.fullmatch(s):
        return float(s)
    if s in ("true", "false"):
        return s == "true"
    return text


def front_matter_value(value: Any) -> Any:
    match value:
        case str():
            return parse_scalar(value)
        case list() | tuple():
            return [front_matter_value(v) for v in value]
        case dict():
            return {str(k): front_matter_value(v) for k, v in value.items()}
        case _:
            # dates and other YAML scalars arrive as Python objects
            if value is None or isinstance(value, (bool, int, float)):
                return to_value(value)
            return str(value)


# ===================================================================
# 1. Host Binding
# ===================================================================

def script_api(func):
    """A decorator to explicitly mark host methods as callable from scripts."""
    func._is_script_api = True
    return func


class ScriptHost(ABC):
    """Base class for Python objects that expose methods to scripts.

    Methods decorated with @script_api are registered as natives under
    their camelCase name (bg_write_text becomes bgWriteText). A method may
    declare a keyword-only `ctx` parameter to receive the NativeContext.
    """

    def api_methods(self) -> Dict[str, Callable]:
        methods = {}
        for name, member in inspect.getmembers(self):
            if not callable(member):
                continue
            func = getattr(member, "__func__", member)
            if getattr(func, "_is_script_api", False):
                methods[camel_case(name.lstrip("_"))] = member
        return methods


def _arity_text(sig: inspect.Signature) -> str:
    required = optional = 0
    variadic = False
    for p in sig.parameters.values():
        if p.kind == p.VAR_POSITIONAL:
            variadic = True
        elif p.kind in (p.POSITIONAL_ONLY, p.POSITIONAL_OR_KEYWORD):
            if p.default is p.empty:
                required += 1
            else:
                optional += 1
    if variadic:
        return f"at least {required}"
    if optional:
        return f"{required} to {required + optional}"
    return str(required)


def bind_native(name: str, func: Callable, convert_result: bool = False) -> NativeRef:
    """Wrap a Python callable with a natural signature as a native.

    Arity is checked against the callable's signature and reported as a
    NativeArgError. Results of host methods are converted to script values.
    """
    sig = inspect.signature(func)
    ctx_param = sig.parameters.get("ctx")
    wants_ctx = ctx_param is not None and ctx_param.kind == ctx_param.KEYWORD_ONLY

    def native(ctx, args):
        kwargs = {"ctx": ctx} if wants_ctx else {}
        try:
            sig.bind(*args, **kwargs)
        except TypeError:
            raise NativeArgError(name, f"expected {_arity_text(sig)} arguments, got {len(args)}") from None
        result = func(*args, **kwargs)
        return to_value(result) if convert_result else result

    return NativeRef(name, native)


class NativeContext:
    """The capability handed to natives for one hook invocation.

    Natives can emit side effects and read or write Global bindings, but
    never see the environment chain of the running script.
    """

    def __init__(self, runtime: 'Runtime', hook: str):
        self._runtime = runtime
        self.hook = hook
        self.host = runtime.host
        self.side_effects: List[Dict[str, Any]] = []

    def emit(self, topic, message: str):
        topics = topic if isinstance(topic, list) else [topic]
        self.side_effects.append({"topics": topics, "message": message})
        if "stdout" in topics and self._runtime.config.echo_to_stdout:
            print(message)

    def get_global(self, name: str) -> Any:
        bindings = self._runtime.global_env.bindings
        if name not in bindings:
            raise UndefinedVariable(name)
        return bindings[name]

    def set_global(self, name: str, value: Any):
        self._runtime.global_env.declare(name, to_value(value))


# ===================================================================
# 2. The Standard Library
# ===================================================================

def _require_list(fn: str, value: Any) -> list:
    if not isinstance(value, list):
        raise NativeArgError(fn, f"expected a list, got {type_name(value)}")
    return value


def _require_map(fn: str, value: Any) -> dict:
    if not isinstance(value, dict):
        raise NativeArgError(fn, f"expected a map, got {type_name(value)}")
    return value


def _require_str(fn: str, value: Any) -> str:
    if not isinstance(value, str):
        raise NativeArgError(fn, f"expected a string, got {type_name(value)}")
    return value


def _require_int(fn: str, value: Any) -> int:
    if not isinstance(value, int) or isinstance(value, bool):
        raise NativeArgError(fn, f"expected an int, got {type_name(value)}")
    return value


def _require_number(fn: str, value: Any) -> float:
    if not is_number(value):
        raise NativeArgError(fn, f"expected a number, got {type_name(value)}")
    return value


def _math(fn: str, func: Callable, *args) -> float:
    values = [float(_require_number(fn, a)) for a in args]
    try:
        return func(*values)
    except (ValueError, OverflowError) as e:
        raise NativeArgError(fn, str(e)) from None


class StdLib:
    """Python implementations of the nimlet built-ins.

    Every method named `_snake_name` is registered as the native `snakeName`.
    """

    def __init__(self, rng: Optional[random.Random] = None):
        self.rng = rng or random.Random()

    # --- Output ---
    def _echo(self, *args, ctx):
        ctx.emit("stdout", "".join(display(a) for a in args))

    def _print(self, *args, ctx):
        ctx.emit("stdout", " ".join(display(a) for a in args))

    # --- Sequences and Maps ---
    def _len(self, value):
        if isinstance(value, (str, list, dict, range)):
            return len(value)
        raise NativeArgError("len", f"expected a string, list, map or range, got {type_name(value)}")

    def _add(self, seq, item):
        _require_list("add", seq).append(item)

    def _delete(self, container, key):
        if isinstance(container, dict):
            if _require_str("delete", key) not in container:
                raise KeyNotFound(key)
            del container[key]
            return None
        seq = _require_list("delete", container)
        index = _require_int("delete", key)
        if index < 0 or index >= len(seq):
            raise IndexOutOfRange(index, len(seq))
        del seq[index]

    def _insert(self, seq, item, index=0):
        seq = _require_list("insert", seq)
        index = _require_int("insert", index)
        if index < 0 or index > len(seq):
            raise IndexOutOfRange(index, len(seq))
        seq.insert(index, item)

    def _new_seq(self, size=0):
        size = _require_int("newSeq", size)
        if size < 0:
            raise NativeArgError("newSeq", "size must not be negative")
        return [None] * size

    def _set_len(self, seq, new_len):
        seq = _require_list("setLen", seq)
        new_len = _require_int("setLen", new_len)
        if new_len < 0:
            raise NativeArgError("setLen", "length must not be negative")
        if new_len < len(seq):
            del seq[new_len:]
        else:
            seq.extend([None] * (new_len - len(seq)))

    def _contains(self, container, item):
        match container:
            case str():
                return _require_str("contains", item) in container
            case dict():
                return item in container if isinstance(item, str) else False
            case list() | range():
                return any(values_equal(v, item) for v in container)
        raise NativeArgError("contains", f"cannot search in {type_name(container)}")

    def _keys(self, mapping):
        return list(_require_map("keys", mapping).keys())

    def _values(self, mapping):
        return list(_require_map("values", mapping).values())

    def _has_key(self, mapping, key):
        return _require_str("hasKey", key) in _require_map("hasKey", mapping)

    # --- Strings ---
    def _to_upper(self, text):
        return _require_str("toUpper", text).upper()

    def _to_lower(self, text):
        return _require_str("toLower", text).lower()

    def _strip(self, text):
        return _require_str("strip", text).strip()

    def _split(self, text, sep=None):
        text = _require_str("split", text)
        if sep is None:
            return text.split()
        if _require_str("split", sep) == "":
            raise NativeArgError("split", "separator must not be empty")
        return text.split(sep)

    def _join(self, items, sep=""):
        sep = _require_str("join", sep)
        return sep.join(display(v) for v in _require_list("join", items))

    def _template(self, text, data):
        """Render a Mustache template against a map."""
        renderer = pystache.Renderer(escape=lambda u: u)
        return renderer.render(_require_str("template", text), _require_map("template", data))

    # --- Type and Conversion ---
    def _str(self, value):
        return display(value)

    def _int(self, value):
        match value:
            case bool():
                return 1 if value else 0
            case int():
                return value
            case float():
                if math.isnan(value) or math.isinf(value):
                    raise NativeArgError("int", f"cannot convert {display(value)} to int")
                return check_int(int(value), "int")
            case str():
                try:
                    return check_int(int(value.strip()), "int")
                except ValueError:
                    raise NativeArgError("int", f"cannot parse {value!r} as int") from None
        raise NativeArgError("int", f"cannot convert {type_name(value)} to int")

    def _float(self, value):
        match value:
            case bool():
                return 1.0 if value else 0.0
            case int() | float():
                return float(value)
            case str():
                try:
                    return float(value.strip())
                except ValueError:
                    raise NativeArgError("float", f"cannot parse {value!r} as float") from None
        raise NativeArgError("float", f"cannot convert {type_name(value)} to float")

    def _bool(self, value):
        match value:
            case bool():
                return value
            case int() | float():
                return value != 0
            case str():
                return len(value) > 0
            case None:
                return False
        raise NativeArgError("bool", f"cannot convert {type_name(value)} to bool")

    def _type_of(self, value):
        return type_name(value)

    # --- Math ---
    def _abs(self, x):
        _require_number("abs", x)
        return check_int(abs(x), "abs") if isinstance(x, int) else abs(x)

    def _min(self, first, *rest):
        values = [_require_number("min", v) for v in (first, *rest)]
        return min(values)

    def _max(self, first, *rest):
        values = [_require_number("max", v) for v in (first, *rest)]
        return max(values)

    def _sqrt(self, x): return _math("sqrt", math.sqrt, x)
    def _pow(self, x, y): return _math("pow", math.pow, x, y)
    def _exp(self, x): return _math("exp", math.exp, x)
    def _ln(self, x): return _math("ln", math.log, x)
    def _log10(self, x): return _math("log10", math.log10, x)
    def _floor(self, x): return _math("floor", lambda v: float(math.floor(v)), x)
    def _ceil(self, x): return _math("ceil", lambda v: float(math.ceil(v)), x)
    def _round(self, x): return _math("round", lambda v: math.copysign(math.floor(abs(v) + 0.5), v), x)
    def _trunc(self, x): return _math("trunc", lambda v: float(math.trunc(v)), x)
    def _sin(self, x): return _math("sin", math.sin, x)
    def _cos(self, x): return _math("cos", math.cos, x)
    def _tan(self, x): return _math("tan", math.tan, x)
    def _arcsin(self, x): return _math("arcsin", math.asin, x)
    def _arccos(self, x): return _math("arccos", math.acos, x)
    def _arctan(self, x): return _math("arctan", math.atan, x)
    def _arctan2(self, y, x): return _math("arctan2", math.atan2, y, x)
    def _deg_to_rad(self, x): return _math("degToRad", math.radians, x)
    def _rad_to_deg(self, x): return _math("radToDeg", math.degrees, x)

    # --- Random ---
    def _rand_int(self, low, high):
        low = _require_int("randInt", low)
        high = _require_int("randInt", high)
        if high < low:
            raise NativeArgError("randInt", f"empty range {low}..{high}")
        return self.rng.randint(low, high)

    def _rand_float(self, high=1.0):
        return self.rng.random() * float(_require_number("randFloat", high))


# ===================================================================
# 3. Script Execution
# ===================================================================

@dataclass
class RuntimeConfig:
    max_call_depth: int = DEFAULT_MAX_CALL_DEPTH
    cancel_event: Optional[threading.Event] = None
    load_stdlib: bool = True
    echo_to_stdout: bool = False
    seed: Optional[int] = None


@dataclass(frozen=True)
class CompiledHook:
    """A parsed fragment bound to a lifecycle event."""
    lifecycle: str
    source: str
    program: Program


@dataclass
class ExecutionResult:
    """The structured result of one hook invocation."""
    status: Literal['success', 'error']
    value: Any = None
    error_message: Optional[str] = None
    error_token: Optional[Dict[str, Any]] = None
    error: Optional[BaseException] = None
    error_kind: Optional[str] = None
    side_effects: List[Dict] = field(default_factory=list)
    hook: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == 'success'

    def format_error(self) -> str:
        """Formats an error message with line and column if available."""
        if self.status != 'error':
            return ""
        msg = str(self.error_message or "Unknown error")
        if self.error_token and self.error_token.get('line') is not None:
            line = self.error_token.get('line')
            col = self.error_token.get('col')
            col_info = f", col {col}" if col is not None else ""
            return f"Error on line {line}{col_info}: {msg}"
        return msg


class Runtime:
    """Loads and runs lifecycle hooks against a persistent Global environment."""

    def __init__(self, front_matter: Optional[Mapping[str, Any]] = None, *,
                 host: Optional[ScriptHost] = None, config: Optional[RuntimeConfig] = None):
        self.config = config or RuntimeConfig()
        self.global_env = Environment(ScopeKind.GLOBAL)
        self.natives: Dict[str, NativeRef] = {}
        self.hooks: Dict[str, List[CompiledHook]] = {}
        self.host: Optional[ScriptHost] = None
        self.evaluator = Evaluator(self.natives, self.config.max_call_depth, self.config.cancel_event)
        if self.config.load_stdlib:
            self._load_stdlib()
        if front_matter:
            self.ingest_front_matter(front_matter)
        if host is not None:
            self.register_host(host)

    def _load_stdlib(self):
        stdlib = StdLib(random.Random(self.config.seed))
        for name, member in inspect.getmembers(stdlib):
            if name.startswith('_') and not name.startswith('__') and callable(member):
                script_name = camel_case(name[1:])
                self.natives[script_name] = bind_native(script_name, member)
        for name, value in CONSTANTS.items():
            self.global_env.declare(name, value)

    # --- registration ---
    def register_native(self, name: str, fn: Callable[[NativeContext, List[Any]], Any]):
        """Register fn(ctx, args) under name; later registrations replace earlier ones."""
        if not callable(fn):
            raise TypeError(f"native {name!r} must be callable")
        self.natives[name] = NativeRef(name, fn)

    def register_function(self, name: str, func: Callable):
        """Register a Python callable with a natural signature as a native."""
        self.natives[name] = bind_native(name, func, convert_result=True)

    def register_host(self, host: ScriptHost):
        self.host = host
        for name, method in host.api_methods().items():
            self.natives[name] = bind_native(name, method, convert_result=True)
        logger.debug("bound host %s", type(host).__name__)

    def ingest_front_matter(self, front_matter: Mapping[str, Any]):
        for key, value in front_matter.items():
            self.global_env.declare(str(key), front_matter_value(value))

    def get_global(self, name: str) -> Any:
        return self.global_env.read(name)

    def set_global(self, name: str, value: Any):
        self.global_env.declare(name, to_value(value))

    # --- loading ---
    def load_hook(self, lifecycle: str, source: str) -> CompiledHook:
        """Compile a fragment. Raises LexError or ParseError; nothing is installed."""
        program = parse(tokenize(source))
        logger.debug("compiled %s hook (%d statements)", lifecycle, len(program.body))
        return CompiledHook(lifecycle, source, program)

    def install(self, hook: CompiledHook):
        self.hooks.setdefault(hook.lifecycle, []).append(hook)

    def load_document(self, document) -> Dict[str, ScriptError]:
        """Compile and install every fragment of a Document; returns the load failures."""
        self.ingest_front_matter(document.front_matter)
        failures: Dict[str, ScriptError] = {}
        for fragment in document.fragments:
            try:
                self.install(self.load_hook(fragment.lifecycle, fragment.source))
            except ScriptError as e:
                failures[fragment.label] = e
                logger.warning("failed to load %s: %s", fragment.label, e)
        return failures

    # --- running ---
    def run(self, lifecycle: str, extra_args: Optional[Mapping[str, Any]] = None) -> List[ExecutionResult]:
        """Run every installed hook for a lifecycle in load order."""
        return [self.run_hook(hook, extra_args) for hook in self.hooks.get(lifecycle, [])]

    def run_hook(self, hook: CompiledHook, extra_args: Optional[Mapping[str, Any]] = None) -> ExecutionResult:
        ctx = NativeContext(self, hook.lifecycle)
        ev = self.evaluator
        ev.context = ctx
        ev.call_stack.clear()
        if hook.lifecycle == "init":
            env = self.global_env
        else:
            env = self.global_env.child(ScopeKind.BLOCK)
        logger.debug("running %s hook", hook.lifecycle)

        sys_limit = sys.getrecursionlimit()
        needed = self.config.max_call_depth * FRAMES_PER_CALL + 1000
        if needed > sys_limit:
            sys.setrecursionlimit(needed)
        try:
            for name, value in (extra_args or {}).items():
                env.declare(name, to_value(value))
            value = ev.execute(hook.program, env)
        except ScriptError as e:
            return self._error_result(e, hook, ctx)
        except RecursionError:
            return self._error_result(CallDepthExceeded(self.config.max_call_depth), hook, ctx)
        except Exception as e:
            logger.exception("internal error in %s hook", hook.lifecycle)
            return self._error_result(e, hook, ctx)
        finally:
            sys.setrecursionlimit(sys_limit)
            ev.context = None
        return ExecutionResult('success', value, side_effects=ctx.side_effects, hook=hook.lifecycle)

    def run_source(self, lifecycle: str, source: str,
                   extra_args: Optional[Mapping[str, Any]] = None) -> ExecutionResult:
        """Compile and run a fragment once, reporting load errors as an error result."""
        try:
            hook = self.load_hook(lifecycle, source)
        except ScriptError as e:
            return self._error_result(e, CompiledHook(lifecycle, source, Program(())), NativeContext(self, lifecycle))
        return self.run_hook(hook, extra_args)

    # --- error formatting ---
    def _error_result(self, e: BaseException, hook: CompiledHook, ctx: NativeContext) -> ExecutionResult:
        msg, token = self._format_error(e, hook.source)
        ctx.side_effects.append({'topics': ['stderr'], 'message': msg})
        kind = e.kind if isinstance(e, ScriptError) else "InternalError"
        return ExecutionResult(
            status='error',
            error_message=msg,
            error_token=token,
            error=e,
            error_kind=kind,
            side_effects=ctx.side_effects,
            hook=hook.lifecycle,
        )

    def _format_error(self, e: BaseException, source: str):
        if isinstance(e, ScriptError):
            msg = f"{e.kind}: {e.message}"
        else:
            msg = f"InternalError: {e}"
        token = None
        line = getattr(e, "line", None)
        col = getattr(e, "col", None)
        if line is not None:
            token = {'line': line, 'col': col}
            msg = f"{msg}\n(line {line}, col {col})"
            context = self._source_context(source, line, col)
            if context:
                msg = f"{msg}\n{context}"
        st = self._format_stacktrace()
        if st:
            msg += "\n" + st
        return msg, token

    def _source_context(self, source: str, line: int, col: Optional[int], radius: int = 2) -> str:
        lines = source.splitlines()
        if not line or line < 1 or line > len(lines):
            return ""
        start = max(1, line - radius)
        end = min(len(lines), line + radius)
        width = len(str(end))
        out = []
        for i in range(start, end + 1):
            prefix = ">" if i == line else " "
            out.append(f"{prefix} {str(i).rjust(width)} | {lines[i - 1]}")
            if i == line and col is not None:
                out.append(f"  {' ' * width} | {' ' * max(col - 1, 0)}^")
        return "\n".join(out)

    def _format_stacktrace(self) -> str:
        stack = self.evaluator.call_stack
        if not stack:
            return ""
        frames = []
        for frame in stack:
            args = " ".join(display(a, nested=True) for a in frame.get('args') or [])
            frames.append(f"({frame['name']} {args})" if args else f"({frame['name']})")
        return "nimlet stacktrace: " + " ".join(frames)


def create_runtime(front_matter: Optional[Mapping[str, Any]] = None, *,
                   host: Optional[ScriptHost] = None,
                   config: Optional[RuntimeConfig] = None) -> Runtime:
    return Runtime(front_matter, host=host, config=config)
