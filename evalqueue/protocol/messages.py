from __future__ import annotations

import time
import uuid
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, Field

# Session option value meaning "run in a fresh namespace"
NO_SESSION = "none"

SHORT_ID_LENGTH = 8


class ResultType(str, Enum):
    OUTPUT = "output"
    VALUE = "value"


class ReadyStatus(str, Enum):
    """Whether a target process can accept input right now."""

    READY = "ready"
    BUSY = "busy"
    DEAD = "dead"


class EvaluationOptions(BaseModel):
    result_type: ResultType = Field(
        default=ResultType.OUTPUT, description="Capture printed output or the last value"
    )
    pp: bool = Field(default=False, description="Pretty-print the result value")
    nolimit: bool = Field(default=False, description="Lift display truncation while running")
    debug: bool = Field(default=False, description="Keep debug scaffolding in the payload")
    result_params: frozenset[str] = Field(
        default_factory=frozenset, description="Output-shaping directives for the sink"
    )
    session: Optional[str] = Field(default=None, description="Target session name")

    @property
    def isolated(self) -> bool:
        return self.session == NO_SESSION


class Evaluation(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()), description="Unique request id")
    timestamp: float = Field(default_factory=time.time, description="Creation time")
    is_async: bool = Field(description="Queued (True) or synchronous (False)")
    caller_context: Any = Field(default=None, description="Where the result is delivered")
    session_name: str = Field(description="Session the request runs in")
    options: EvaluationOptions = Field(default_factory=EvaluationOptions)
    source_path: Path = Field(description="File holding the code body")
    result_path: Path = Field(description="File the target writes the result to")
    anchor_start: Any = Field(default=None, description="Start of the request region")
    anchor_end: Any = Field(default=None, description="End of the request region")

    @property
    def short_id(self) -> str:
        return self.id[:SHORT_ID_LENGTH]


_FLAG_TRUE = {"yes", "true", "t", "1", "on"}


def _flag(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return True
    return str(value).strip().lower() in _FLAG_TRUE


def parse_options(params: dict[str, Any]) -> EvaluationOptions:
    """Build evaluation options from header arguments.

    Keys may be given with or without a leading colon, e.g.
    ``{":results": "value pp silent", ":session": "main"}``.

    Args:
        params: Header arguments of the request

    Returns:
        Parsed options

    Raises:
        ValueError: If more than one result type is requested
    """
    normalized = {str(k).lstrip(":"): v for k, v in params.items()}

    results = normalized.get("results") or ""
    if isinstance(results, str):
        words = results.split()
    else:
        words = [str(w) for w in results]

    types = [w for w in words if w in (ResultType.OUTPUT.value, ResultType.VALUE.value)]
    if len(set(types)) > 1:
        raise ValueError(f"Conflicting result types: {' '.join(types)}")

    result_type = ResultType(types[0]) if types else ResultType.OUTPUT
    pp = "pp" in words
    result_params = frozenset(w for w in words if w not in types and w != "pp")

    session = normalized.get("session")
    if session is not None:
        session = str(session)

    return EvaluationOptions(
        result_type=result_type,
        pp=pp,
        nolimit=_flag(normalized["nolimit"]) if "nolimit" in normalized else False,
        debug=_flag(normalized["debug"]) if "debug" in normalized else False,
        result_params=result_params,
        session=session,
    )
