from nimlet import ExecutionResult, create_runtime


def test_runtime_type_error_traces_and_stderr():
    rt = create_runtime()
    res = rt.run_source("update", 'var x = 1\nvar y = x + "a"')
    assert res.status == 'error'
    msg = res.error_message or ''
    # Basic runtime error signal
    assert msg.startswith("TypeError: ")

    # Location and context
    assert "line 2" in msg
    assert 'var y = x + "a"' in msg
    assert "^" in msg
    assert res.error_token == {'line': 2, 'col': 11}

    # Consolidated stderr side-effect contains the formatted error
    stderr_effects = [e for e in res.side_effects if e.get('topics') == ['stderr']]
    assert stderr_effects, f"stderr side effect missing: {res.side_effects}"
    assert msg in stderr_effects[-1]['message']


def test_stacktrace_shows_proc_chain_and_context():
    rt = create_runtime()
    script = """proc boom(x: int): int = x div 0
proc callBoom(y: int): int = boom(y)
proc outer(z: int): int = callBoom(z)
outer(5)
"""
    res = rt.run_source("init", script)
    assert res.status == 'error', res.error_message
    msg = res.error_message or ''
    assert res.error_kind == "DivisionByZero"
    assert "line 1" in msg
    assert "nimlet stacktrace: (outer 5) (callBoom 5) (boom 5)" in msg


def test_successful_call_frames_are_popped():
    rt = create_runtime()
    res = rt.run_source("init", "proc ok(): int = 1\ndiscard ok()\nmissing")
    assert res.error_kind == "UndefinedVariable"
    assert "stacktrace" not in res.error_message


def test_parse_error_result_has_location():
    rt = create_runtime()
    res = rt.run_source("init", "var a = 1\nvar b = (a + 2")
    assert res.status == 'error'
    assert res.error_kind == "ParseError"
    assert "ParseError: expected )" in res.error_message
    assert res.error_token['line'] == 2


def test_lex_error_result():
    rt = create_runtime()
    res = rt.run_source("init", 'echo "open')
    assert res.error_kind == "LexError"
    assert "unterminated string literal" in res.error_message


def test_format_error_prefixes_location():
    rt = create_runtime()
    res = rt.run_source("init", "\n\nnope")
    assert res.format_error().startswith("Error on line 3, col 1: UndefinedVariable: undefined variable 'nope'")


def test_format_error_on_success_is_empty():
    res = ExecutionResult('success', 1)
    assert res.ok
    assert res.format_error() == ""


def test_side_effects_before_error_are_kept():
    rt = create_runtime()
    res = rt.run_source("init", 'echo "before"\n1 div 0')
    topics = [e['topics'] for e in res.side_effects]
    assert topics == [['stdout'], ['stderr']]
    assert res.side_effects[0]['message'] == "before"


def test_error_hook_name_is_recorded():
    rt = create_runtime()
    res = rt.run_source("shutdown", "nil + 1")
    assert res.hook == "shutdown"
    assert not res.ok
