import argparse
import logging
import sys
from pathlib import Path

from nimlet import BufferHost, DocumentError, Printer, create_runtime, load_document


def report(results) -> bool:
    """Print side effects and errors of a batch of hook results; True when all succeeded."""
    ok = True
    for result in results:
        for effect in result.side_effects:
            if effect.get('topics') == ['stdout']:
                print(effect.get('message', ''))
        if result.status == 'error':
            ok = False
            print(f"[{result.hook}] {result.format_error()}", file=sys.stderr)
    return ok


def run_document_file(file_path: str, frames: int = 1, width: int = 80, height: int = 24) -> int:
    """Run a markdown document through init, `frames` update/render passes and shutdown."""
    p = Path(file_path)
    try:
        doc = load_document(p)
    except FileNotFoundError:
        print(f"Error: file not found: {file_path}", file=sys.stderr)
        return 1
    except DocumentError as e:
        print(f"{e.kind}: {e}", file=sys.stderr)
        return 1

    host = BufferHost(width, height)
    runtime = create_runtime(host=host)
    runtime.set_global("running", True)
    failures = runtime.load_document(doc)
    for label, err in failures.items():
        print(f"[{label}] {err.kind}: {err}", file=sys.stderr)

    # front matter `targetFPS: 30` seeds getTargetFps()
    fps = runtime.global_env.bindings.get("targetFPS")
    if isinstance(fps, (int, float)) and not isinstance(fps, bool) and fps > 0:
        host.target_fps = float(fps)

    def frame_args():
        return {
            "termWidth": host.width,
            "termHeight": host.height,
            "frameCount": host.frame_count,
            "fps": host.target_fps,
        }

    ok = report(runtime.run("init", frame_args()))
    for _ in range(frames):
        if runtime.global_env.bindings.get("running") is False:
            break
        ok = report(runtime.run("update", frame_args())) and ok
        ok = report(runtime.run("render", frame_args())) and ok
        host.frame_count += 1
    ok = report(runtime.run("shutdown", frame_args())) and ok

    print(host.render())
    return 0 if ok and not failures else 1


def read_statement(first: str) -> str:
    """Lines opening a suite keep reading until a blank line."""
    lines = [first]
    if not first.rstrip().endswith((":", "=")):
        return first
    while True:
        try:
            more = input(".. ")
        except EOFError:
            break
        if not more.strip():
            break
        lines.append(more)
    return "\n".join(lines)


def repl():
    print("nimlet REPL v0.1")
    print("Type 'exit' or press Ctrl+D to quit.")

    runtime = create_runtime(host=BufferHost())
    printer = Printer()

    while True:
        try:
            line = input(">> ")
        except EOFError:
            print("\nExiting.")
            break
        if not line.strip():
            continue
        if line.strip() == "exit":
            break

        # REPL input runs against Global so declarations persist between lines
        result = runtime.run_source("init", read_statement(line))
        if result.status == 'error':
            print(result.format_error(), file=sys.stderr)
            continue
        for effect in result.side_effects:
            if effect.get('topics') == ['stdout']:
                print(effect.get('message', ''))
        if result.value is not None:
            print(printer.pformat(result.value))


def main(argv=None):
    """Run a document when a path is given, otherwise start the interactive REPL."""
    parser = argparse.ArgumentParser(prog="storie", description="Run nimlet lifecycle hooks from a markdown document.")
    parser.add_argument("path", nargs="?", help="markdown document to run")
    parser.add_argument("--frames", type=int, default=1, help="number of update/render passes")
    parser.add_argument("--width", type=int, default=80)
    parser.add_argument("--height", type=int, default=24)
    parser.add_argument("--log-level", default="WARNING")
    args = parser.parse_args(argv)

    logging.basicConfig(level=getattr(logging, args.log_level.upper(), logging.WARNING),
                        format="%(levelname)s %(name)s: %(message)s")

    if args.path:
        raise SystemExit(run_document_file(args.path, args.frames, args.width, args.height))
    repl()


if __name__ == "__main__":
    try:
        main()
    except KeyboardInterrupt:
        print("\nExiting.")
