"""
Extracts front matter and lifecycle fragments from a markdown document.

    ---
    targetFPS: 60
    title: My App
    ---

    ```nim on:init
    var score = 0
    ```

Front matter is YAML. Fenced blocks whose info string starts with `nim`
(or `nimlet`) and carries an `on:<lifecycle>` attribute become fragments;
other fenced blocks are left alone.
"""
import logging
import textwrap
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from nimlet.nimlet_datatypes import ScriptError

logger = logging.getLogger(__name__)

FENCE = "```"
LANGUAGES = ("nim", "nimlet")


class DocumentError(ScriptError):
    kind = "DocumentError"


@dataclass(frozen=True)
class Fragment:
    lifecycle: str
    source: str
    line: int  # document line of the first source line
    label: str


@dataclass
class Document:
    front_matter: Dict[str, Any] = field(default_factory=dict)
    fragments: List[Fragment] = field(default_factory=list)

    def lifecycle(self, name: str) -> List[Fragment]:
        return [f for f in self.fragments if f.lifecycle == name]


def _split_front_matter(lines: List[str]) -> tuple:
    if not lines or lines[0].strip() != "---":
        return {}, 0
    for i in range(1, len(lines)):
        if lines[i].strip() in ("---", "..."):
            break
    else:
        raise DocumentError("unterminated front matter", 1, 1)
    try:
        data = yaml.safe_load("\n".join(lines[1:i]))
    except yaml.YAMLError as e:
        mark = getattr(e, "problem_mark", None)
        line = mark.line + 2 if mark is not None else 1
        raise DocumentError(f"invalid front matter: {e}", line, 1) from None
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise DocumentError("front matter must be a mapping", 2, 1)
    return data, i + 1


def _lifecycle_of(info: str) -> Optional[str]:
    parts = info.split()
    if not parts or parts[0] not in LANGUAGES:
        return None
    for part in parts[1:]:
        if part.startswith("on:") and len(part) > 3:
            return part[3:]
    return None


def parse_document(text: str) -> Document:
    lines = text.replace("\r\n", "\n").split("\n")
    front_matter, i = _split_front_matter(lines)
    doc = Document(front_matter=front_matter)
    counts: Dict[str, int] = {}
    while i < len(lines):
        stripped = lines[i].strip()
        if not stripped.startswith(FENCE):
            i += 1
            continue
        start = i
        info = stripped[len(FENCE):].strip()
        body: List[str] = []
        i += 1
        while i < len(lines) and not lines[i].strip().startswith(FENCE):
            body.append(lines[i])
            i += 1
        if i >= len(lines):
            raise DocumentError("unterminated code block", start + 1, 1)
        i += 1
        lifecycle = _lifecycle_of(info)
        if lifecycle is None:
            logger.debug("skipping code block at line %d (%r)", start + 1, info)
            continue
        n = counts.get(lifecycle, 0)
        counts[lifecycle] = n + 1
        source = textwrap.dedent("\n".join(body))
        doc.fragments.append(Fragment(lifecycle, source, start + 2, f"{lifecycle}[{n}]"))
    return doc


def load_document(path) -> Document:
    return parse_document(Path(path).read_text(encoding="utf-8"))
