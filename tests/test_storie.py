import importlib.util
import sys
import textwrap
import uuid
from pathlib import Path

import pytest


def _load_storie_module():
    """Dynamically load the top-level storie.py as a module with a unique name."""
    path = Path(__file__).resolve().parents[1] / "storie.py"
    mod_name = f"storie_for_test_{uuid.uuid4().hex}"
    spec = importlib.util.spec_from_file_location(mod_name, str(path))
    mod = importlib.util.module_from_spec(spec)
    sys.modules[mod_name] = mod
    assert spec.loader is not None
    spec.loader.exec_module(mod)
    return mod


DOC = textwrap.dedent("""\
    ---
    greeting: hello
    ---

    ```nim on:init
    var frames = 0
    echo greeting, " from init"
    ```

    ```nim on:update
    frames += 1
    if frames == 3:
      quit()
    ```

    ```nim on:render
    bgClear()
    bgWriteText(0, 0, "frame " & $frames)
    ```

    ```nim on:shutdown
    echo "bye after ", frames
    ```
""")


def test_run_document_file_drives_lifecycle(tmp_path, capsys):
    storie = _load_storie_module()
    path = tmp_path / "demo.md"
    path.write_text(DOC, encoding="utf-8")

    code = storie.run_document_file(str(path), frames=10, width=12, height=2)
    out = capsys.readouterr().out
    assert code == 0
    assert "hello from init" in out
    assert "bye after 3" in out
    assert "frame 3" in out


def test_front_matter_target_fps_reaches_the_host(tmp_path, capsys):
    storie = _load_storie_module()
    path = tmp_path / "fps.md"
    path.write_text(
        '---\ntargetFPS: "30"\n---\n\n```nim on:init\necho "fps ", getTargetFps(), " ", fps\n```\n',
        encoding="utf-8",
    )
    code = storie.run_document_file(str(path), frames=0)
    assert code == 0
    assert "fps 30.0 30.0" in capsys.readouterr().out


def test_run_document_file_missing(capsys):
    storie = _load_storie_module()
    code = storie.run_document_file("/nonexistent/nowhere.md")
    assert code == 1
    assert "file not found" in capsys.readouterr().err


def test_run_document_file_reports_hook_errors(tmp_path, capsys):
    storie = _load_storie_module()
    path = tmp_path / "bad.md"
    path.write_text("```nim on:init\nvar x = 1 div 0\n```\n\n```nim on:update\nvar = 2\n```\n", encoding="utf-8")
    code = storie.run_document_file(str(path), frames=1)
    err = capsys.readouterr().err
    assert code == 1
    assert "DivisionByZero" in err
    assert "[update[0]] ParseError" in err


def test_main_runs_document(tmp_path, capsys):
    storie = _load_storie_module()
    path = tmp_path / "demo.md"
    path.write_text(DOC, encoding="utf-8")
    with pytest.raises(SystemExit) as exc:
        storie.main([str(path), "--frames", "1", "--width", "10", "--height", "1"])
    assert exc.value.code == 0
    assert "frame 1" in capsys.readouterr().out


def test_repl_exit_immediately(monkeypatch, capsys):
    storie = _load_storie_module()
    monkeypatch.setattr("builtins.input", lambda prompt="": "exit")
    storie.repl()
    out = capsys.readouterr().out
    assert "nimlet REPL v0.1" in out
    assert "Type 'exit' or press Ctrl+D to quit." in out


def test_repl_prints_side_effects_and_values(monkeypatch, capsys):
    storie = _load_storie_module()
    lines = iter([
        'echo "hello from nimlet"',
        "var x = 40",
        "x + 2",
        "proc double(n: int): int =",
        "  return n * 2",
        "",
        "double(x)",
        "nope",
        "exit",
    ])
    monkeypatch.setattr("builtins.input", lambda prompt="": next(lines))
    storie.repl()
    captured = capsys.readouterr()
    assert "hello from nimlet" in captured.out
    assert "42" in captured.out
    assert "80" in captured.out
    assert "undefined variable 'nope'" in captured.err


def test_repl_exits_on_eof(monkeypatch, capsys):
    storie = _load_storie_module()

    def raise_eof(prompt=""):
        raise EOFError

    monkeypatch.setattr("builtins.input", raise_eof)
    storie.repl()
    assert "Exiting." in capsys.readouterr().out
