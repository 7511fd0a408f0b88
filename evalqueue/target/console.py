"""Line-oriented Python console used as a target process.

Reads one line at a time from stdin, echoes it the way a terminal would, and
prints ``>>> `` / ``... `` prompts on stdout. Errors go to stderr, which the
driver merges into the same stream.

Run with ``python -u -m evalqueue.target.console [session-name]``.
"""

from __future__ import annotations

import code
import logging
import os
import sys

import structlog

# Logs go to stderr, never stdout
structlog.configure(
    processors=[
        structlog.dev.ConsoleRenderer(colors=False),
    ],
    wrapper_class=structlog.make_filtering_bound_logger(
        getattr(logging, os.getenv("EVALQUEUE_CONSOLE_LOG_LEVEL", "WARNING").upper(), logging.WARNING)
    ),
    context_class=dict,
    logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
    cache_logger_on_first_use=True,
)

from evalqueue.target.constants import PS1, PS2

logger = structlog.get_logger()


class LineConsole(code.InteractiveConsole):
    """InteractiveConsole driven by an explicit line source."""

    def __init__(self, session_name: str = "python", echo: bool = True) -> None:
        super().__init__(locals={"__name__": "__main__", "__doc__": None})
        self.session_name = session_name
        self.echo = echo

    def _prompt(self, more: bool) -> None:
        sys.stdout.write(PS2 if more else PS1)
        sys.stdout.flush()

    def serve(self, stream=None) -> None:
        stream = stream or sys.stdin
        logger.info("Console started", session=self.session_name, pid=os.getpid())
        more = False
        self._prompt(more)
        for raw in stream:
            line = raw.rstrip("\r\n")
            if self.echo:
                sys.stdout.write(line + "\n")
            try:
                more = self.push(line)
            except SystemExit:
                break
            self._prompt(more)
        logger.info("Console exiting", session=self.session_name)


def main() -> None:
    session_name = sys.argv[1] if len(sys.argv) > 1 else "python"
    LineConsole(session_name).serve()


if __name__ == "__main__":
    main()
