import textwrap

import pytest

from nimlet import Printer, display, parse_source
from nimlet.nimlet_ast import BinaryOp, Identifier, Literal, UnaryOp
from nimlet.nimlet_datatypes import Closure, NativeRef


@pytest.fixture
def printer():
    return Printer(indent_width=2)


DISPLAY_CASES = [
    ("nil", None, "nil"),
    ("true", True, "true"),
    ("int", 42, "42"),
    ("float", 1.5, "1.5"),
    ("whole_float", 2.0, "2.0"),
    ("string", "hi", "hi"),
    ("range", range(0, 3), "0..<3"),
    ("list", [1, "a", None], '[1, "a", nil]'),
    ("map", {"name": "x", "two words": [1]}, '{name: "x", "two words": [1]}'),
    ("nested_quote", ['say "hi"'], '["say \\"hi\\""]'),
]


@pytest.mark.parametrize("name, value, expected", DISPLAY_CASES, ids=[c[0] for c in DISPLAY_CASES])
def test_display(name, value, expected):
    assert display(value) == expected


def test_display_callables():
    assert display(Closure((), None, None, "tick")) == "<proc tick>"
    assert display(Closure((), None, None)) == "<proc anonymous>"
    assert display(NativeRef("echo", lambda ctx, args: None)) == "<native echo>"


def test_display_cyclic_list():
    xs = [1]
    xs.append(xs)
    assert display(xs) == "[1, [...]]"


def test_pformat_values_quotes_strings(printer):
    assert printer.pformat("hi") == '"hi"'
    assert printer.pformat([1, 2]) == "[1, 2]"


@pytest.mark.parametrize("node, expected", [
    (BinaryOp("*", BinaryOp("+", Literal(1), Literal(2)), Literal(3)), "(1 + 2) * 3"),
    (BinaryOp("-", Literal(1), BinaryOp("-", Literal(2), Literal(3))), "1 - (2 - 3)"),
    (BinaryOp("-", BinaryOp("-", Literal(1), Literal(2)), Literal(3)), "1 - 2 - 3"),
    (UnaryOp("not", BinaryOp("and", Identifier("a"), Identifier("b"))), "not (a and b)"),
    (UnaryOp("-", Literal(4)), "-4"),
    (Literal("a\nb"), '"a\\nb"'),
])
def test_pformat_expressions(printer, node, expected):
    assert printer.pformat(node) == expected


def test_pformat_program_layout(printer):
    src = "if a:\n  x = 1\nelif b:\n  x = 2\nelse:\n  x = 3\n"
    assert printer.pformat(parse_source(src)) == src


ROUND_TRIP_SOURCES = [
    """
    var score = 0
    let name: string = "ship"
    const speeds = @[1, 2.5, -3]
    var cfg = {width: 80, "full name": "x y", nested: {ok: true, none: nil}}
    score += 2 * (3 + 4)
    cfg.width = cfg["width"] div 2 mod 7
    echo "score: ", score
    discard score.len
    """,
    """
    proc fib(n: int): int =
      if n < 2:
        return n
      return fib(n - 1) + fib(n - 2)
    proc add(a, b: int): int = a + b
    let twice = proc(f: proc, x: int): int = f(f(x))
    var total = 0
    for i, v in [1, 2, 3]:
      if v mod 2 == 0 and not (i > 5 or false):
        continue
      total &= $v
    while total != "":
      break
    block:
      var tmp = total[0..<1]
      break
    """,
    """
    proc makeCounter(): proc =
      var count = 0
      proc inc(): int =
        count += 1
        return count
      return inc
    proc noop() =
      return
    if counter mod 30 == 0:
      message = "hit"
    elif counter > 100:
      message = "late"
    """,
    """
    var pos = Point(x: 1, y: 2)
    var pair = (1, "a")
    var who = (name: "Bob", age: 30)
    pos.x -= 1
    pair[0] *= 3
    case who.age
    of 1, 2:
      echo "young"
    of 3..40: echo "adult"
    elif who.name == "Bob":
      discard 0
    else:
      echo "old"
    block outer:
      defer:
        echo "left"
      for i in 0..<3:
        if i == 1:
          break outer
    """,
]


@pytest.mark.parametrize("src", ROUND_TRIP_SOURCES)
def test_print_then_parse_round_trips(printer, src):
    original = parse_source(textwrap.dedent(src))
    printed = printer.pformat(original)
    reparsed = parse_source(printed)
    assert reparsed == original, printed
    # printing is idempotent once normalised
    assert printer.pformat(reparsed) == printed


def test_pformat_keeps_compound_operators_and_labels(printer):
    src = "x += 1\nblock done:\n  break done\ncase x\nof 1:\n  x = 2\nelse:\n  discard x\n"
    assert printer.pformat(parse_source(src)) == src
