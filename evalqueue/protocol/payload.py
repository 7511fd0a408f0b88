"""Payload construction for queued evaluations.

The payload is plain Python source pasted into the target's interactive
prompt. It is three complete statements: a begin sentinel comment, one
``exec`` line carrying the runner, and an end sentinel comment. The runner
reads the code body from the source file, executes it, and writes the result
text to the result file. The result is always terminated by a single newline
so that an empty result still produces a non-empty file.
"""

from __future__ import annotations

import builtins
import os
import tempfile
from pathlib import Path
from typing import Optional, Sequence

from .messages import SHORT_ID_LENGTH, EvaluationOptions, ResultType

BEGIN_SENTINEL = "#OB-PYTHON-VTERM_BEGIN"
END_SENTINEL = "#OB-PYTHON-VTERM_END"

DEFAULT_RECOGNIZED_ERRORS = ("Exception",)

LONG_LINE_PLACEHOLDER = "Output suppressed (line too long)"


def check_recognized_errors(names: Sequence[str]) -> None:
    """Raise ValueError unless every name is a builtin exception class."""
    for name in names:
        kind = getattr(builtins, name, None)
        if not (isinstance(kind, type) and issubclass(kind, BaseException)):
            raise ValueError(f"Not a builtin exception class: {name}")


_RUNNER = '''\
def _evalqueue_run(src, dst, result_type, pp, nolimit, debug, isolated, error_names):
    import ast, builtins, contextlib, io, os, pprint, sys, traceback
    errors = tuple(getattr(builtins, name) for name in error_names)
    namespace = {"__name__": "__main__"} if isolated else globals()
    with open(src, encoding="utf-8") as f:
        body = f.read()
    if not debug:
        os.remove(src)
    try:
        with contextlib.ExitStack() as stack:
            if nolimit:
                np = sys.modules.get("numpy")
                if np is not None:
                    stack.enter_context(np.printoptions(threshold=sys.maxsize))
                pd = sys.modules.get("pandas")
                if pd is not None:
                    stack.enter_context(pd.option_context(
                        "display.max_rows", None, "display.max_columns", None))
            if result_type == "value":
                tree = ast.parse(body, src)
                last = None
                if tree.body and isinstance(tree.body[-1], ast.Expr):
                    last = ast.Expression(tree.body.pop().value)
                exec(compile(tree, src, "exec"), namespace)
                value = eval(compile(last, src, "eval"), namespace) if last is not None else None
                result = pprint.pformat(value) if pp else str(value)
            else:
                buffer = io.StringIO()
                with contextlib.redirect_stdout(buffer), contextlib.redirect_stderr(buffer):
                    exec(compile(body, src, "exec"), namespace)
                result = buffer.getvalue()
                if result.endswith("\\n"):
                    result = result[:-1]
    except errors as exc:
        if debug:
            traceback.print_exc()
        result = f"{type(exc).__name__}: {exc}"
    # One unbuffered write so a watcher never sees a partial result
    with open(dst, "wb", buffering=0) as f:
        f.write((result + "\\n").encode("utf-8"))
'''


def build_payload(
    evaluation_id: str,
    options: EvaluationOptions,
    source_path: Path | str,
    result_path: Path | str,
    recognized_errors: Sequence[str] = DEFAULT_RECOGNIZED_ERRORS,
) -> str:
    """Build the text sent to the target process for one evaluation.

    Args:
        evaluation_id: Id of the evaluation; its first 8 characters tag the
            begin sentinel
        options: Evaluation options (result type, pp, nolimit, debug, session)
        source_path: File the code body was persisted to
        result_path: Empty file the runner writes the result to
        recognized_errors: Builtin exception class names turned into a
            ``"<Kind>: <message>"`` result instead of propagating

    Returns:
        Payload text, newline terminated
    """
    check_recognized_errors(recognized_errors)

    call = "_evalqueue_run(%r, %r, %r, %r, %r, %r, %r, %r)" % (
        str(source_path),
        str(result_path),
        ResultType(options.result_type).value,
        options.pp,
        options.nolimit,
        options.debug,
        options.isolated,
        tuple(recognized_errors),
    )
    runner = _RUNNER + call + "\ndel _evalqueue_run\n"
    lines = [
        f"{BEGIN_SENTINEL} {evaluation_id[:SHORT_ID_LENGTH]}",
        f"exec(compile({runner!r}, '<evalqueue>', 'exec'))",
        END_SENTINEL,
    ]
    return "\n".join(lines) + "\n"


def create_exchange_file(
    directory: Optional[Path | str] = None,
    suffix: str = "",
    content: str = "",
) -> Path:
    """Create a fresh, uniquely named file for source/result exchange."""
    fd, name = tempfile.mkstemp(prefix="evalqueue-", suffix=suffix, dir=directory)
    with os.fdopen(fd, "w", encoding="utf-8") as f:
        f.write(content)
    return Path(name)


def result_available(path: Path | str) -> bool:
    try:
        return os.path.getsize(path) > 0
    except OSError:
        return False


def read_result(path: Path | str) -> str:
    """Read a result file written by the runner.

    Returns an empty string if the file is missing or still empty.
    """
    try:
        text = Path(path).read_text(encoding="utf-8")
    except OSError:
        return ""
    if text.endswith("\n"):
        text = text[:-1]
    return text


def suppress_long_lines(text: str, max_line_length: Optional[int]) -> str:
    """Replace a result that has a line longer than the limit by a placeholder."""
    if max_line_length is None:
        return text
    if any(len(line) > max_line_length for line in text.splitlines()):
        return LONG_LINE_PLACEHOLDER
    return text
