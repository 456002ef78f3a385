"""
Recursive-descent parser turning a token stream into a Program.

Binary operators are handled by precedence climbing over the table below,
from loosest (`or`) to tightest (`* / % mod div`). Unary operators bind
tighter than any binary operator, and postfix calls, indexing and field
access bind tightest. Parsing stops at the first error.
"""
from typing import List, Optional, Tuple

from nimlet.nimlet_ast import (
    Assign, BinaryOp, Block, BlockStmt, Break, Call, Case, Continue, Defer,
    ExprStmt, FieldExpr, For, Identifier, If, IndexExpr, ListLiteral, Literal,
    MapLiteral, Node, OfBranch, ProcDecl, ProcExpr, Program, Return, UnaryOp,
    VarDecl, While,
)
from nimlet.nimlet_datatypes import ParseError
from nimlet.nimlet_tokenizer import Token, TokenKind, tokenize

BINARY_PRECEDENCE = {
    "or": 1,
    "and": 2,
    "==": 3, "!=": 3,
    "<": 4, "<=": 4, ">": 4, ">=": 4,
    "..": 5, "..<": 5,
    "+": 6, "-": 6, "&": 6,
    "*": 7, "/": 7, "%": 7, "mod": 7, "div": 7,
}
UNARY_OPS = ("-", "not", "$")
UNARY_PRECEDENCE = 8

ASSIGN_OPS = {
    "=": None,
    "+=": "+",
    "-=": "-",
    "*=": "*",
    "/=": "/",
    "%=": "%",
    "&=": "&",
}

# Tokens that may follow a bare identifier to form a command call: `echo "hi", x`
COMMAND_ARG_START = (TokenKind.STRING, TokenKind.INT, TokenKind.FLOAT, TokenKind.IDENT)
COMMAND_ARG_KEYWORDS = ("true", "false", "nil", "not")


def describe(tok: Token) -> str:
    match tok.kind:
        case TokenKind.NEWLINE:
            return "end of line"
        case TokenKind.INDENT:
            return "indentation"
        case TokenKind.DEDENT:
            return "dedent"
        case TokenKind.EOF:
            return "end of input"
        case TokenKind.STRING:
            return f'"{tok.lexeme}"'
        case _:
            return f"'{tok.lexeme}'"


class Parser:
    def __init__(self, tokens: List[Token]):
        self.tokens = tokens
        self.pos = 0
        self.proc_depth = 0
        self.break_depth = 0     # loops and `block:` suites
        self.continue_depth = 0  # loops only
        self.labels: List[str] = []  # enclosing `block name:` suites

    # --- token helpers ---
    def _cur(self) -> Token:
        return self.tokens[self.pos]

    def _peek(self, offset: int = 1) -> Token:
        return self.tokens[min(self.pos + offset, len(self.tokens) - 1)]

    def _advance(self) -> Token:
        tok = self.tokens[self.pos]
        if tok.kind != TokenKind.EOF:
            self.pos += 1
        return tok

    def _check(self, kind: TokenKind, lexeme: Optional[str] = None) -> bool:
        tok = self._cur()
        return tok.kind == kind and (lexeme is None or tok.lexeme == lexeme)

    def _match(self, kind: TokenKind, lexeme: Optional[str] = None) -> Optional[Token]:
        if self._check(kind, lexeme):
            return self._advance()
        return None

    def _expect(self, kind: TokenKind, lexeme: Optional[str] = None, expected: Optional[str] = None) -> Token:
        if self._check(kind, lexeme):
            return self._advance()
        raise self._error(expected or (f"'{lexeme}'" if lexeme else kind.value))

    def _error(self, expected: str, tok: Optional[Token] = None) -> ParseError:
        tok = tok or self._cur()
        return ParseError(tok.line, tok.col, expected, describe(tok))

    def _keyword(self, *words: str) -> bool:
        tok = self._cur()
        return tok.kind == TokenKind.KEYWORD and tok.lexeme in words

    # --- statements ---
    def parse_program(self) -> Program:
        body = self._statements_until(TokenKind.EOF)
        return Program(tuple(body), 1, 1)

    def _statements_until(self, end: TokenKind) -> List[Node]:
        body: List[Node] = []
        while not self._check(end):
            if self._match(TokenKind.NEWLINE):
                continue
            if self._check(TokenKind.EOF):
                raise self._error("dedent")
            body.extend(self._statement())
        return body

    def _statement(self) -> List[Node]:
        tok = self._cur()
        if tok.kind == TokenKind.KEYWORD:
            match tok.lexeme:
                case "var" | "let" | "const":
                    return self._declarations()
                case "if":
                    return [self._if()]
                case "while":
                    return [self._while()]
                case "for":
                    return [self._for()]
                case "case":
                    return [self._case()]
                case "block":
                    return [self._block()]
                case "defer":
                    return [self._defer()]
                case "proc" if self._peek().kind == TokenKind.IDENT:
                    return [self._proc_decl()]
        node = self._simple()
        self._end_statement()
        return [node]

    def _end_statement(self):
        if self._match(TokenKind.NEWLINE):
            return
        if self._check(TokenKind.DEDENT) or self._check(TokenKind.EOF):
            return
        # a suite that ended in a dedent already terminated the line
        if self.pos > 0 and self.tokens[self.pos - 1].kind in (TokenKind.NEWLINE, TokenKind.DEDENT):
            return
        raise self._error("end of statement")

    def _simple(self) -> Node:
        """A statement that fits on one line and carries no suite of its own."""
        tok = self._cur()
        if tok.kind == TokenKind.KEYWORD:
            match tok.lexeme:
                case "return":
                    self._advance()
                    if self.proc_depth == 0:
                        raise ParseError(tok.line, tok.col, "'return' inside a proc", "'return' at top level")
                    value = None if self._at_line_end() else self._expression()
                    return Return(value, tok.line, tok.col)
                case "break":
                    self._advance()
                    label = self._break_label()
                    if label is None and self.break_depth == 0:
                        raise ParseError(tok.line, tok.col, "'break' inside a loop or block", "'break'")
                    return Break(label, tok.line, tok.col)
                case "continue":
                    self._advance()
                    if self.continue_depth == 0:
                        raise ParseError(tok.line, tok.col, "'continue' inside a loop", "'continue'")
                    return Continue(tok.line, tok.col)
                case "discard":
                    self._advance()
                    return ExprStmt(self._expression(), True, tok.line, tok.col)
                case "var" | "let" | "const":
                    self._advance()
                    return self._var_decl(tok)
        if tok.kind == TokenKind.IDENT and self._is_command_start(self._peek()):
            return self._command(tok)
        return self._expression_statement(self._expression())

    def _expression_statement(self, expr: Node) -> Node:
        tok = self._cur()
        if tok.kind == TokenKind.OP and tok.lexeme in ASSIGN_OPS:
            if not isinstance(expr, (Identifier, IndexExpr, FieldExpr)):
                raise self._error("assignment target", tok)
            self._advance()
            value = self._expression()
            return Assign(expr, value, ASSIGN_OPS[tok.lexeme], expr.line, expr.col)
        return ExprStmt(expr, False, expr.line, expr.col)

    def _break_label(self) -> Optional[str]:
        tok = self._cur()
        if tok.kind != TokenKind.IDENT or tok.line != self.tokens[self.pos - 1].line:
            return None
        if tok.lexeme not in self.labels:
            raise self._error("label of an enclosing block")
        self._advance()
        return tok.lexeme

    def _at_line_end(self) -> bool:
        return self._cur().kind in (TokenKind.NEWLINE, TokenKind.DEDENT, TokenKind.EOF)

    def _is_command_start(self, nxt: Token) -> bool:
        if nxt.line != self._cur().line:
            return False
        if nxt.kind in COMMAND_ARG_START:
            return True
        return nxt.kind == TokenKind.KEYWORD and nxt.lexeme in COMMAND_ARG_KEYWORDS

    def _command(self, name_tok: Token) -> Node:
        self._advance()
        args = [self._expression()]
        while self._match(TokenKind.COMMA):
            args.append(self._expression())
        callee = Identifier(name_tok.lexeme, name_tok.line, name_tok.col)
        return ExprStmt(Call(callee, tuple(args), name_tok.line, name_tok.col), False, name_tok.line, name_tok.col)

    def _declarations(self) -> List[Node]:
        kw = self._advance()
        if not self._match(TokenKind.NEWLINE):
            decl = self._var_decl(kw)
            self._end_statement()
            return [decl]
        # var
        #   a = 1
        #   b = 2
        self._expect(TokenKind.INDENT, expected=f"indented '{kw.lexeme}' section")
        decls = []
        while not self._match(TokenKind.DEDENT):
            if self._match(TokenKind.NEWLINE):
                continue
            decls.append(self._var_decl(kw))
            self._end_statement()
        return decls

    def _var_decl(self, kw: Token) -> VarDecl:
        name = self._expect(TokenKind.IDENT, expected="variable name")
        type_annotation = None
        if self._match(TokenKind.COLON):
            type_annotation = self._type()
        init = None
        if self._match(TokenKind.OP, "="):
            init = self._expression()
        elif kw.lexeme != "var":
            raise self._error(f"'=' in '{kw.lexeme}' declaration")
        return VarDecl(name.lexeme, init, kw.lexeme, type_annotation, name.line, name.col)

    def _type(self) -> str:
        tok = self._cur()
        if tok.kind not in (TokenKind.IDENT, TokenKind.KEYWORD):
            raise self._error("type name")
        self._advance()
        name = tok.lexeme
        if self._match(TokenKind.LBRACKET):
            args = [self._type()]
            while self._match(TokenKind.COMMA):
                args.append(self._type())
            self._expect(TokenKind.RBRACKET)
            name = f"{name}[{', '.join(args)}]"
        return name

    def _suite(self) -> Block:
        start = self._cur()
        if self._match(TokenKind.NEWLINE):
            self._expect(TokenKind.INDENT, expected="indented block")
            body = self._statements_until(TokenKind.DEDENT)
            self._expect(TokenKind.DEDENT)
            return Block(tuple(body), start.line, start.col)
        if self._at_line_end():
            raise self._error("statement")
        node = self._simple()
        self._end_statement()
        return Block((node,), start.line, start.col)

    def _loop_suite(self) -> Block:
        self.break_depth += 1
        self.continue_depth += 1
        try:
            return self._suite()
        finally:
            self.break_depth -= 1
            self.continue_depth -= 1

    def _if(self) -> If:
        tok = self._advance()  # 'if' or 'elif'
        cond = self._expression()
        self._expect(TokenKind.COLON)
        then_block = self._suite()
        else_block = None
        if self._keyword("elif"):
            nested = self._if()
            else_block = Block((nested,), nested.line, nested.col)
        elif self._match(TokenKind.KEYWORD, "else"):
            self._expect(TokenKind.COLON)
            else_block = self._suite()
        return If(cond, then_block, else_block, tok.line, tok.col)

    def _while(self) -> While:
        tok = self._advance()
        cond = self._expression()
        self._expect(TokenKind.COLON)
        return While(cond, self._loop_suite(), tok.line, tok.col)

    def _for(self) -> For:
        tok = self._advance()
        names = [self._expect(TokenKind.IDENT, expected="loop variable").lexeme]
        if self._match(TokenKind.COMMA):
            names.append(self._expect(TokenKind.IDENT, expected="loop variable").lexeme)
        self._expect(TokenKind.KEYWORD, "in")
        iterable = self._expression()
        self._expect(TokenKind.COLON)
        return For(tuple(names), iterable, self._loop_suite(), tok.line, tok.col)

    def _block(self) -> BlockStmt:
        tok = self._advance()
        label = None
        if self._check(TokenKind.IDENT):
            label = self._advance().lexeme
        self._expect(TokenKind.COLON)
        self.break_depth += 1
        self.labels.append(label)
        try:
            body = self._suite()
        finally:
            self.break_depth -= 1
            self.labels.pop()
        return BlockStmt(body, label, tok.line, tok.col)

    def _case(self) -> Case:
        """
        case x
        of 1, 2: ...
        of 3..5: ...
        elif cond: ...
        else: ...

        The branches may also sit one level in, after `case x:`.
        """
        tok = self._advance()
        subject = self._expression()
        self._match(TokenKind.COLON)
        self._expect(TokenKind.NEWLINE, expected="end of line")
        indented = self._match(TokenKind.INDENT) is not None
        branches = []
        while self._keyword("of"):
            of_tok = self._advance()
            values = [self._expression()]
            while self._match(TokenKind.COMMA):
                values.append(self._expression())
            self._expect(TokenKind.COLON)
            branches.append(OfBranch(tuple(values), self._suite(), of_tok.line, of_tok.col))
        if not branches:
            raise self._error("'of' branch")
        elif_branches = []
        while self._keyword("elif"):
            self._advance()
            cond = self._expression()
            self._expect(TokenKind.COLON)
            elif_branches.append((cond, self._suite()))
        else_block = None
        if self._match(TokenKind.KEYWORD, "else"):
            self._expect(TokenKind.COLON)
            else_block = self._suite()
        if indented:
            self._expect(TokenKind.DEDENT)
        return Case(subject, tuple(branches), tuple(elif_branches), else_block, tok.line, tok.col)

    def _defer(self) -> Defer:
        tok = self._advance()
        self._expect(TokenKind.COLON)
        saved = (self.break_depth, self.continue_depth, self.labels)
        self.break_depth = self.continue_depth = 0
        self.labels = []
        try:
            body = self._suite()
        finally:
            self.break_depth, self.continue_depth, self.labels = saved
        return Defer(body, tok.line, tok.col)

    def _params(self) -> Tuple[Tuple[str, ...], Tuple[Optional[str], ...]]:
        self._expect(TokenKind.LPAREN)
        names: List[str] = []
        types: List[Optional[str]] = []
        pending = 0  # names waiting for a shared type, as in `a, b: int`
        while not self._check(TokenKind.RPAREN):
            self._match(TokenKind.KEYWORD, "var")
            name = self._expect(TokenKind.IDENT, expected="parameter name")
            if name.lexeme in names:
                raise self._error("distinct parameter names", name)
            names.append(name.lexeme)
            types.append(None)
            pending += 1
            if self._match(TokenKind.COLON):
                annotation = self._type()
                for i in range(len(types) - pending, len(types)):
                    types[i] = annotation
                pending = 0
            if not self._match(TokenKind.COMMA):
                break
        self._expect(TokenKind.RPAREN)
        return tuple(names), tuple(types)

    def _return_type(self) -> Optional[str]:
        if self._match(TokenKind.COLON):
            return self._type()
        return None

    def _proc_body(self, inline_statement: bool) -> Block:
        saved = (self.break_depth, self.continue_depth, self.labels)
        self.break_depth = self.continue_depth = 0
        self.labels = []
        self.proc_depth += 1
        try:
            if self._check(TokenKind.NEWLINE):
                return self._suite()
            start = self._cur()
            node = self._simple()
            # `proc double(x: int): int = x * 2` yields its expression
            if isinstance(node, ExprStmt) and not node.discard:
                node = Return(node.expr, start.line, start.col)
            if inline_statement:
                self._end_statement()
            return Block((node,), start.line, start.col)
        finally:
            self.proc_depth -= 1
            self.break_depth, self.continue_depth, self.labels = saved

    def _proc_decl(self) -> ProcDecl:
        tok = self._advance()
        name = self._expect(TokenKind.IDENT, expected="proc name")
        params, types = self._params()
        return_type = self._return_type()
        self._expect(TokenKind.OP, "=")
        body = self._proc_body(inline_statement=True)
        return ProcDecl(name.lexeme, params, body, return_type, types, tok.line, tok.col)

    # --- expressions ---
    def _expression(self, min_prec: int = 1) -> Node:
        left = self._unary()
        while True:
            tok = self._cur()
            if tok.kind not in (TokenKind.OP, TokenKind.KEYWORD) or tok.lexeme not in BINARY_PRECEDENCE:
                break
            prec = BINARY_PRECEDENCE[tok.lexeme]
            if prec < min_prec:
                break
            self._advance()
            right = self._expression(prec + 1)
            left = BinaryOp(tok.lexeme, left, right, tok.line, tok.col)
        return left

    def _unary(self) -> Node:
        tok = self._cur()
        if tok.kind in (TokenKind.OP, TokenKind.KEYWORD) and tok.lexeme in UNARY_OPS:
            self._advance()
            return UnaryOp(tok.lexeme, self._unary(), tok.line, tok.col)
        return self._postfix()

    def _postfix(self) -> Node:
        expr = self._primary()
        while True:
            tok = self._cur()
            if self._match(TokenKind.LPAREN):
                if self._named_field_ahead():
                    # object construction: Point(x: 1, y: 2) builds a map
                    if not isinstance(expr, Identifier):
                        raise self._error("argument")
                    expr = MapLiteral(self._fields(TokenKind.RPAREN), expr.line, expr.col)
                    continue
                args = self._sequence(TokenKind.RPAREN)
                expr = Call(expr, tuple(args), tok.line, tok.col)
            elif self._match(TokenKind.LBRACKET):
                index = self._expression()
                self._expect(TokenKind.RBRACKET)
                expr = IndexExpr(expr, index, tok.line, tok.col)
            elif self._match(TokenKind.DOT):
                name = self._cur()
                if name.kind not in (TokenKind.IDENT, TokenKind.KEYWORD):
                    raise self._error("field name")
                self._advance()
                if self._match(TokenKind.LPAREN):
                    # method call syntax: a.f(x) is f(a, x)
                    args = self._sequence(TokenKind.RPAREN)
                    callee = Identifier(name.lexeme, name.line, name.col)
                    expr = Call(callee, (expr, *args), name.line, name.col)
                else:
                    expr = FieldExpr(expr, name.lexeme, name.line, name.col)
            else:
                return expr

    def _sequence(self, closer: TokenKind) -> List[Node]:
        items: List[Node] = []
        while not self._check(closer):
            items.append(self._expression())
            if not self._match(TokenKind.COMMA):
                break
        self._expect(closer)
        return items

    def _primary(self) -> Node:
        tok = self._cur()
        match tok.kind:
            case TokenKind.INT:
                self._advance()
                return Literal(int(tok.lexeme.replace("_", "")), tok.line, tok.col)
            case TokenKind.FLOAT:
                self._advance()
                return Literal(float(tok.lexeme.replace("_", "")), tok.line, tok.col)
            case TokenKind.STRING:
                self._advance()
                return Literal(tok.lexeme, tok.line, tok.col)
            case TokenKind.IDENT:
                self._advance()
                return Identifier(tok.lexeme, tok.line, tok.col)
            case TokenKind.LPAREN:
                self._advance()
                return self._paren(tok)
            case TokenKind.LBRACKET:
                self._advance()
                return ListLiteral(tuple(self._sequence(TokenKind.RBRACKET)), tok.line, tok.col)
            case TokenKind.LBRACE:
                self._advance()
                return self._map_literal(tok)
            case TokenKind.OP if tok.lexeme == "@" and self._peek().kind == TokenKind.LBRACKET:
                # Nim sequence literal @[...]
                self._advance()
                self._advance()
                return ListLiteral(tuple(self._sequence(TokenKind.RBRACKET)), tok.line, tok.col)
            case TokenKind.KEYWORD:
                match tok.lexeme:
                    case "true" | "false":
                        self._advance()
                        return Literal(tok.lexeme == "true", tok.line, tok.col)
                    case "nil":
                        self._advance()
                        return Literal(None, tok.line, tok.col)
                    case "proc":
                        return self._proc_expr()
        raise self._error("expression")

    def _paren(self, open_tok: Token) -> Node:
        """`(e)` groups, `(a, b)` is a tuple and `(name: a, age: b)` a named tuple.

        Tuples evaluate to lists and named tuples to maps.
        """
        if self._match(TokenKind.RPAREN):
            return ListLiteral((), open_tok.line, open_tok.col)
        if self._named_field_ahead():
            return MapLiteral(self._fields(TokenKind.RPAREN), open_tok.line, open_tok.col)
        expr = self._expression()
        if not self._match(TokenKind.COMMA):
            self._expect(TokenKind.RPAREN)
            return expr
        items = [expr, *self._sequence(TokenKind.RPAREN)]
        return ListLiteral(tuple(items), open_tok.line, open_tok.col)

    def _named_field_ahead(self) -> bool:
        return self._check(TokenKind.IDENT) and self._peek().kind == TokenKind.COLON

    def _fields(self, closer: TokenKind) -> Tuple[Tuple[str, Node], ...]:
        pairs = []
        seen = set()
        while not self._check(closer):
            key_tok = self._cur()
            if key_tok.kind not in (TokenKind.IDENT, TokenKind.STRING):
                raise self._error("map key" if closer == TokenKind.RBRACE else "field name")
            self._advance()
            if key_tok.lexeme in seen:
                raise self._error("distinct map keys", key_tok)
            seen.add(key_tok.lexeme)
            self._expect(TokenKind.COLON)
            pairs.append((key_tok.lexeme, self._expression()))
            if not self._match(TokenKind.COMMA):
                break
        self._expect(closer)
        return tuple(pairs)

    def _map_literal(self, open_tok: Token) -> MapLiteral:
        return MapLiteral(self._fields(TokenKind.RBRACE), open_tok.line, open_tok.col)

    def _proc_expr(self) -> ProcExpr:
        tok = self._advance()
        params, _ = self._params()
        return_type = self._return_type()
        self._expect(TokenKind.OP, "=")
        body = self._proc_body(inline_statement=False)
        return ProcExpr(params, body, return_type, tok.line, tok.col)


def parse(tokens: List[Token]) -> Program:
    """Parse a complete token stream. Raises ParseError on the first error."""
    parser = Parser(tokens)
    try:
        return parser.parse_program()
    except RecursionError:
        tok = parser._cur()
        raise ParseError(tok.line, tok.col, "shallower nesting", "nesting too deep") from None


def parse_source(source: str) -> Program:
    return parse(tokenize(source))
