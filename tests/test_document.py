import textwrap

import pytest

from nimlet import DocumentError, create_runtime, load_document, parse_document


DOC = textwrap.dedent("""\
    ---
    targetFPS: "60"
    title: Star Field
    speed: 1.5
    palette: [red, "2"]
    ---

    # A demo

    Some prose with `inline code`.

    ```nim on:init
    var score = 0
    ```

    ```python
    print("not for us")
    ```

    ```nim
    var skipped = true
    ```

    ```nimlet on:update
        score += 1
        if score > 2:
          score = 0
    ```

    ```nim on:init
    var lives = 3
    ```
""")


def test_front_matter_is_extracted():
    doc = parse_document(DOC)
    assert doc.front_matter == {
        "targetFPS": "60",
        "title": "Star Field",
        "speed": 1.5,
        "palette": ["red", "2"],
    }


def test_only_lifecycle_blocks_become_fragments():
    doc = parse_document(DOC)
    assert [f.label for f in doc.fragments] == ["init[0]", "update[0]", "init[1]"]
    assert [f.source.strip() for f in doc.lifecycle("init")] == ["var score = 0", "var lives = 3"]


def test_fragment_source_is_dedented_and_line_is_recorded():
    doc = parse_document(DOC)
    update = doc.lifecycle("update")[0]
    assert update.source.startswith("score += 1\nif score > 2:\n  score = 0")
    assert DOC.splitlines()[update.line - 1].strip() == "score += 1"


def test_document_without_front_matter():
    doc = parse_document("```nim on:render\nbgClear()\n```\n")
    assert doc.front_matter == {}
    assert doc.fragments[0].lifecycle == "render"


def test_empty_front_matter():
    assert parse_document("---\n---\ntext\n").front_matter == {}


@pytest.mark.parametrize("text, message", [
    ("---\ntitle: x\n", "unterminated front matter"),
    ("---\n- a\n- b\n---\n", "front matter must be a mapping"),
    ("---\ntitle: [unclosed\n---\n", "invalid front matter"),
    ("```nim on:init\nvar x = 1\n", "unterminated code block"),
])
def test_document_errors(text, message):
    with pytest.raises(DocumentError) as exc:
        parse_document(text)
    assert message in exc.value.message
    assert exc.value.kind == "DocumentError"


def test_load_document_from_path(tmp_path):
    path = tmp_path / "app.md"
    path.write_text(DOC, encoding="utf-8")
    doc = load_document(path)
    assert len(doc.fragments) == 3


def test_runtime_ingests_document():
    rt = create_runtime()
    failures = rt.load_document(parse_document(DOC))
    assert failures == {}
    assert rt.get_global("targetFPS") == 60
    assert rt.get_global("speed") == 1.5
    assert rt.get_global("palette") == ["red", 2]
    rt.run("init")
    assert rt.get_global("lives") == 3
    for _ in range(3):
        rt.run("update")
    assert rt.get_global("score") == 0
