"""
A text-buffer host: two character layers that scripts draw into.

The background layer is opaque; the foreground layer is transparent where
nothing was written. render() composes both into plain text lines.
"""
from typing import List, Optional

from nimlet.nimlet_datatypes import NativeArgError, type_name
from nimlet.nimlet_interpreter import is_number
from nimlet.nimlet_runtime import ScriptHost, script_api


def _int_arg(fn: str, value) -> int:
    if not is_number(value):
        raise NativeArgError(fn, f"expected a number, got {type_name(value)}")
    return int(value)


def _char_arg(fn: str, value) -> str:
    if not isinstance(value, str) or len(value) != 1:
        raise NativeArgError(fn, "expected a single character string")
    return value


def _text_arg(fn: str, value) -> str:
    if not isinstance(value, str):
        raise NativeArgError(fn, f"expected a string, got {type_name(value)}")
    return value


class Layer:
    def __init__(self, width: int, height: int, fill: Optional[str]):
        self.width = width
        self.height = height
        self.fill = fill
        self.cells: List[List[Optional[str]]] = []
        self.clear()

    def clear(self):
        self.cells = [[self.fill] * self.width for _ in range(self.height)]

    def put(self, x: int, y: int, ch: Optional[str]):
        if 0 <= x < self.width and 0 <= y < self.height:
            self.cells[y][x] = ch

    def write_text(self, x: int, y: int, text: str):
        for i, ch in enumerate(text):
            self.put(x + i, y, ch)

    def fill_rect(self, x: int, y: int, w: int, h: int, ch: str):
        for row in range(y, y + h):
            for col in range(x, x + w):
                self.put(col, row, ch)


class BufferHost(ScriptHost):
    """Exposes a background and a foreground layer to scripts."""

    def __init__(self, width: int = 80, height: int = 24, target_fps: float = 60.0):
        self.width = width
        self.height = height
        self.target_fps = float(target_fps)
        self.frame_count = 0
        self.bg = Layer(width, height, " ")
        self.fg = Layer(width, height, None)

    def render(self) -> str:
        lines = []
        for y in range(self.height):
            row = []
            for x in range(self.width):
                ch = self.fg.cells[y][x]
                row.append(ch if ch is not None else self.bg.cells[y][x])
            lines.append("".join(row).rstrip())
        return "\n".join(lines)

    # --- script API ---
    @script_api
    def bg_clear(self):
        self.bg.clear()

    @script_api
    def fg_clear(self):
        self.fg.clear()

    @script_api
    def bg_write(self, x, y, ch):
        self.bg.put(_int_arg("bgWrite", x), _int_arg("bgWrite", y), _char_arg("bgWrite", ch))

    @script_api
    def fg_write(self, x, y, ch):
        self.fg.put(_int_arg("fgWrite", x), _int_arg("fgWrite", y), _char_arg("fgWrite", ch))

    @script_api
    def bg_write_text(self, x, y, text):
        self.bg.write_text(_int_arg("bgWriteText", x), _int_arg("bgWriteText", y), _text_arg("bgWriteText", text))

    @script_api
    def fg_write_text(self, x, y, text):
        self.fg.write_text(_int_arg("fgWriteText", x), _int_arg("fgWriteText", y), _text_arg("fgWriteText", text))

    @script_api
    def bg_fill_rect(self, x, y, w, h, ch):
        fn = "bgFillRect"
        self.bg.fill_rect(_int_arg(fn, x), _int_arg(fn, y), _int_arg(fn, w), _int_arg(fn, h), _char_arg(fn, ch))

    @script_api
    def fg_fill_rect(self, x, y, w, h, ch):
        fn = "fgFillRect"
        self.fg.fill_rect(_int_arg(fn, x), _int_arg(fn, y), _int_arg(fn, w), _int_arg(fn, h), _char_arg(fn, ch))

    @script_api
    def get_term_width(self):
        return self.width

    @script_api
    def get_term_height(self):
        return self.height

    @script_api
    def get_target_fps(self):
        return self.target_fps

    @script_api
    def set_target_fps(self, fps):
        if not is_number(fps) or fps <= 0:
            raise NativeArgError("setTargetFps", "fps must be a positive number")
        self.target_fps = float(fps)

    @script_api
    def get_frame_count(self):
        return self.frame_count

    @script_api
    def quit(self, *, ctx):
        ctx.set_global("running", False)
