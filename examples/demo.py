#!/usr/bin/env python3
"""evalqueue - queued evaluation against a live Python console."""

from __future__ import annotations

import asyncio
from typing import Any

import structlog

from evalqueue import EvaluationManager, EvaluationOptions, QueueConfig, parse_options
from evalqueue.protocol.framing import FilteredChunk
from evalqueue.target.driver import ReplProcessDriver

# Configure structured logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.dev.ConsoleRenderer(),
    ],
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger()


class PrintSink:
    """Prints every delivered result under the name of its request."""

    def __init__(self) -> None:
        self.done = asyncio.Event()
        self.expected = 0
        self.received = 0

    def deliver(self, caller_context: Any, result: str, options: EvaluationOptions) -> None:
        print(f"[{caller_context}] ({options.result_type.value})")
        print(result if result else "<empty>")
        self.received += 1
        if self.received >= self.expected:
            self.done.set()

    def anchor_is_valid(self, caller_context: Any, anchor_start: Any, anchor_end: Any) -> bool:
        return True


def show_terminal(session: str, chunk: FilteredChunk) -> None:
    if not chunk.suppress:
        print(chunk.data, end="")


async def demo_queued(manager: EvaluationManager, sink: PrintSink) -> None:
    """Submit several blocks at once; results arrive in submission order."""
    print("=== Queued Demo ===\n")

    blocks = [
        ("define", "import math\ndef area(r):\n    return math.pi * r ** 2", {":results": "output"}),
        ("value", "area(2)", {":results": "value"}),
        ("output", "for i in range(3):\n    print(i, area(i))", {":results": "output"}),
        ("pretty", "{k: list(range(k)) for k in range(6)}", {":results": "value pp"}),
        ("error", "1 / 0", {":results": "value"}),
    ]
    sink.expected = len(blocks)
    for name, body, params in blocks:
        ack = await manager.evaluate(name, "demo", body, parse_options(params))
        print(f"{name}: {ack}")

    await asyncio.wait_for(sink.done.wait(), timeout=30)
    print("-" * 40)


async def demo_blocking(manager: EvaluationManager) -> None:
    """Evaluate synchronously, bypassing the queue."""
    print("\n=== Blocking Demo ===\n")

    result = await manager.evaluate(
        "blocking", "demo", "area(10)", parse_options({":results": "value"}), blocking=True
    )
    print(f"area(10) = {result}")


async def main() -> None:
    """Main entry point."""
    print("evalqueue - queued evaluation demo")
    print("=" * 40)

    sink = PrintSink()
    driver = ReplProcessDriver(on_output=show_terminal)
    manager = EvaluationManager(driver, sink, QueueConfig())

    try:
        await driver.start_session("demo")
        await demo_queued(manager, sink)
        await demo_blocking(manager)
    except KeyboardInterrupt:
        print("\nInterrupted by user")
    except Exception as e:
        logger.error("Demo error", error=str(e), exc_info=True)
    finally:
        await manager.shutdown()
        await driver.shutdown()


if __name__ == "__main__":
    asyncio.run(main())
