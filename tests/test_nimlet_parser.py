import pytest

from nimlet import LexError, ParseError, parse_source
from nimlet.nimlet_ast import (
    Assign, BinaryOp, Block, BlockStmt, Break, Call, Case, Defer, ExprStmt,
    FieldExpr, For, Identifier, If, IndexExpr, ListLiteral, Literal, MapLiteral,
    OfBranch, ProcDecl, ProcExpr, Return, UnaryOp, VarDecl, While,
)


def expr(source):
    stmt = parse_source(source).body[0]
    assert isinstance(stmt, ExprStmt)
    return stmt.expr


def test_precedence_multiplicative_over_additive():
    assert expr("1 + 2 * 3") == BinaryOp("+", Literal(1), BinaryOp("*", Literal(2), Literal(3)))


def test_precedence_logical_operators():
    assert expr("a or b and c") == BinaryOp(
        "or", Identifier("a"), BinaryOp("and", Identifier("b"), Identifier("c")))


def test_precedence_equality_over_relational():
    assert expr("a < b == c > d") == BinaryOp(
        "==",
        BinaryOp("<", Identifier("a"), Identifier("b")),
        BinaryOp(">", Identifier("c"), Identifier("d")),
    )


def test_unary_binds_tighter_than_binary():
    assert expr("-x * y") == BinaryOp("*", UnaryOp("-", Identifier("x")), Identifier("y"))
    assert expr("not a and b") == BinaryOp("and", UnaryOp("not", Identifier("a")), Identifier("b"))


def test_binary_operators_are_left_associative():
    assert expr("10 - 3 - 2") == BinaryOp("-", BinaryOp("-", Literal(10), Literal(3)), Literal(2))


def test_mod_and_div_keywords():
    assert expr("counter mod 30 == 0") == BinaryOp(
        "==", BinaryOp("mod", Identifier("counter"), Literal(30)), Literal(0))


def test_postfix_call_index_and_field():
    assert expr("f(1)[2].name") == FieldExpr(
        IndexExpr(Call(Identifier("f"), (Literal(1),)), Literal(2)), "name")


def test_method_call_syntax():
    assert expr("xs.add(4)") == Call(Identifier("add"), (Identifier("xs"), Literal(4)))


def test_command_call_syntax():
    assert expr('echo "hi", x') == Call(Identifier("echo"), (Literal("hi"), Identifier("x")))


def test_list_map_and_seq_literals():
    assert expr("[1, 2]") == ListLiteral((Literal(1), Literal(2)))
    assert expr("@[1]") == ListLiteral((Literal(1),))
    assert expr('{name: "a", "two words": 2}') == MapLiteral(
        (("name", Literal("a")), ("two words", Literal(2))))


def test_declarations():
    prog = parse_source("var a = 1\nlet b = 2\nconst c = 3\nvar d: int")
    assert prog.body == (
        VarDecl("a", Literal(1), "var"),
        VarDecl("b", Literal(2), "let"),
        VarDecl("c", Literal(3), "const"),
        VarDecl("d", None, "var", "int"),
    )


def test_declaration_section():
    prog = parse_source("var\n  a = 1\n  b: seq[int]\n")
    assert prog.body == (VarDecl("a", Literal(1)), VarDecl("b", None, "var", "seq[int]"))


def test_compound_assignment_keeps_operator():
    assert parse_source("x += 2").body[0] == Assign(Identifier("x"), Literal(2), "+")
    assert parse_source("a[i] &= s").body[0] == Assign(IndexExpr(Identifier("a"), Identifier("i")), Identifier("s"), "&")


def test_assignment_targets():
    prog = parse_source("a[0] = 1\nm.key = 2")
    assert prog.body[0] == Assign(IndexExpr(Identifier("a"), Literal(0)), Literal(1))
    assert prog.body[1] == Assign(FieldExpr(Identifier("m"), "key"), Literal(2))


def test_if_elif_else_nests_elif():
    prog = parse_source("if a:\n  x = 1\nelif b:\n  x = 2\nelse:\n  x = 3\n")
    node = prog.body[0]
    assert isinstance(node, If)
    nested = node.else_block.body[0]
    assert isinstance(nested, If)
    assert nested.cond == Identifier("b")
    assert nested.else_block == Block((Assign(Identifier("x"), Literal(3)),))


def test_inline_suites():
    prog = parse_source("if a: x = 1\nwhile b: break")
    assert prog.body[0].then_block == Block((Assign(Identifier("x"), Literal(1)),))
    assert prog.body[1] == While(Identifier("b"), Block((Break(),)))


def test_for_with_two_loop_variables():
    node = parse_source("for i, v in items:\n  discard v\n").body[0]
    assert node == For(("i", "v"), Identifier("items"), Block((ExprStmt(Identifier("v"), True),)))


def test_block_statement():
    node = parse_source("block:\n  break\n").body[0]
    assert node == BlockStmt(Block((Break(),)))


def test_proc_declaration_with_shared_parameter_types():
    node = parse_source("proc add(a, b: int): int = a + b").body[0]
    assert node == ProcDecl(
        "add", ("a", "b"),
        Block((Return(BinaryOp("+", Identifier("a"), Identifier("b"))),)),
        "int", ("int", "int"),
    )


def test_proc_with_suite_body():
    node = parse_source("proc greet(name: string) =\n  echo \"hi \", name\n").body[0]
    assert isinstance(node, ProcDecl)
    assert node.return_type is None
    assert isinstance(node.body.body[0], ExprStmt)


def test_lambda_expression():
    decl = parse_source("let double = proc(x: int): int = x * 2").body[0]
    assert decl.init == ProcExpr(("x",), Block((Return(BinaryOp("*", Identifier("x"), Literal(2))),)), "int")


def test_missing_closing_delimiter_reports_expected_and_found():
    with pytest.raises(ParseError) as exc:
        parse_source("foo(1, 2")
    assert exc.value.expected == ")"
    assert exc.value.found == "end of line"
    assert exc.value.line == 1


@pytest.mark.parametrize("source, expected", [
    ("let x", "'=' in 'let' declaration"),
    ("return 1", "'return' inside a proc"),
    ("break", "'break' inside a loop or block"),
    ("block:\n  continue\n", "'continue' inside a loop"),
    ("1 + ", "expression"),
    ("1 = 2", "assignment target"),
    ("{a: 1, a: 2}", "distinct map keys"),
    ("proc f(a, a) = a", "distinct parameter names"),
    ("if x\n  y\n", ":"),
    ("x y z", "end of statement"),
    ("break nowhere", "label of an enclosing block"),
    ("case x\nelse: discard y\n", "'of' branch"),
    ("Point(x: 1, 2)", "field name"),
    ("f(x)(y: 1)", "argument"),
])
def test_parse_errors(source, expected):
    with pytest.raises(ParseError) as exc:
        parse_source(source)
    assert exc.value.expected == expected


def test_break_inside_proc_inside_loop_is_rejected():
    with pytest.raises(ParseError):
        parse_source("while true:\n  proc f() =\n    break\n")


def test_lex_errors_surface_from_parse_source():
    with pytest.raises(LexError):
        parse_source('echo "unterminated')


def test_labeled_block_and_break():
    node = parse_source("block outer:\n  while true:\n    break outer\n").body[0]
    assert node == BlockStmt(Block((While(Literal(True), Block((Break("outer"),))),)), "outer")


def test_case_statement_with_of_elif_and_else():
    source = "case n\nof 1, 2: x = 1\nof 3..5:\n  x = 2\nelif n > 9: x = 3\nelse: x = 4\n"
    node = parse_source(source).body[0]
    assert node == Case(
        Identifier("n"),
        (
            OfBranch((Literal(1), Literal(2)), Block((Assign(Identifier("x"), Literal(1)),))),
            OfBranch((BinaryOp("..", Literal(3), Literal(5)),), Block((Assign(Identifier("x"), Literal(2)),))),
        ),
        ((BinaryOp(">", Identifier("n"), Literal(9)), Block((Assign(Identifier("x"), Literal(3)),))),),
        Block((Assign(Identifier("x"), Literal(4)),)),
    )


def test_case_branches_may_be_indented():
    flat = parse_source("case n\nof 1: x = 1\nelse: x = 2\n")
    indented = parse_source("case n:\n  of 1: x = 1\n  else: x = 2\necho x\n")
    assert indented.body[0] == flat.body[0]
    assert len(indented.body) == 2


def test_defer_statement():
    node = parse_source("defer:\n  echo \"done\"\n").body[0]
    assert node == Defer(Block((ExprStmt(Call(Identifier("echo"), (Literal("done"),))),)))


def test_tuples_become_lists_and_named_tuples_maps():
    assert expr("(1, 2)") == ListLiteral((Literal(1), Literal(2)))
    assert expr("(1,)") == ListLiteral((Literal(1),))
    assert expr("()") == ListLiteral(())
    assert expr("(name: \"Bob\", age: 30)") == MapLiteral((("name", Literal("Bob")), ("age", Literal(30))))
    assert expr("(1 + 2)") == BinaryOp("+", Literal(1), Literal(2))


def test_object_construction_builds_a_map():
    assert expr("Point(x: 1, y: 2)") == MapLiteral((("x", Literal(1)), ("y", Literal(2))))
    assert expr("Point(1, 2)") == Call(Identifier("Point"), (Literal(1), Literal(2)))


def test_deep_nesting_is_a_parse_error():
    source = "(" * 3000 + "1" + ")" * 3000
    with pytest.raises(ParseError) as exc:
        parse_source(source)
    assert exc.value.found == "nesting too deep"
