"""Queued evaluation of code requests against long-lived REPL sessions."""

from .protocol.messages import Evaluation, EvaluationOptions, ReadyStatus, ResultType, parse_options
from .session.config import QueueConfig
from .session.manager import EvaluationManager

__all__ = [
    "Evaluation",
    "EvaluationManager",
    "EvaluationOptions",
    "QueueConfig",
    "ReadyStatus",
    "ResultType",
    "parse_options",
]
