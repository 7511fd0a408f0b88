"""Configuration for evaluation queues."""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields
from typing import Optional


@dataclass
class QueueConfig:
    """Configuration for queue, dispatcher and synchronous path behavior.

    Timeouts are in seconds unless the name says otherwise.
    """

    # Synchronous path
    poll_interval: float = 0.05
    ready_interval: float = 0.05
    sync_timeout: float = 60.0

    # Dispatcher
    retry_delay: float = 0.1
    # None waits for a completion event forever; abort is the only way out
    watch_timeout: Optional[float] = None

    # watchfiles tuning
    watch_debounce_ms: int = 50
    watch_rust_timeout_ms: int = 500

    # Result handling
    max_line_length: Optional[int] = 10000
    exchange_dir: Optional[str] = None
    default_session: str = "python"
    recognized_errors: tuple[str, ...] = field(default_factory=lambda: ("Exception",))

    @classmethod
    def from_env(cls, prefix: str = "EVALQUEUE_") -> QueueConfig:
        """Build a config with ``EVALQUEUE_<FIELD>`` environment overrides.

        ``none`` (any case) sets an optional field to None; recognized error
        names are comma separated.
        """
        config = cls()
        for f in fields(cls):
            raw = os.getenv(prefix + f.name.upper())
            if raw is None:
                continue
            if raw.strip().lower() == "none" and f.name in _OPTIONAL:
                value = None
            elif f.name == "recognized_errors":
                value = tuple(name.strip() for name in raw.split(",") if name.strip())
            elif f.name in _FLOATS:
                value = float(raw)
            elif f.name in _INTS:
                value = int(raw)
            else:
                value = raw
            setattr(config, f.name, value)
        return config


_OPTIONAL = {"watch_timeout", "max_line_length", "exchange_dir"}
_FLOATS = {"poll_interval", "ready_interval", "sync_timeout", "retry_delay", "watch_timeout"}
_INTS = {"watch_debounce_ms", "watch_rust_timeout_ms", "max_line_length"}
