from nimlet.nimlet_datatypes import (
    ArithmeticOverflow, CallDepthExceeded, Cancelled, Closure, DivisionByZero,
    Environment, IndexOutOfRange, KeyNotFound, LexError, NativeArgError,
    NativeRef, NotCallable, ParseError, ScopeKind, ScriptError,
    ScriptRuntimeError, ScriptTypeError, UndefinedVariable,
)
from nimlet.nimlet_document import Document, DocumentError, Fragment, load_document, parse_document
from nimlet.nimlet_host import BufferHost
from nimlet.nimlet_parser import parse, parse_source
from nimlet.nimlet_printer import Printer, display
from nimlet.nimlet_runtime import (
    LIFECYCLES, CompiledHook, ExecutionResult, NativeContext, Runtime,
    RuntimeConfig, ScriptHost, StdLib, create_runtime, script_api,
)
from nimlet.nimlet_tokenizer import Token, TokenKind, tokenize
