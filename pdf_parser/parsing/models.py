from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional


class SessionState(str, Enum):
    IDLE = "idle"
    ACCUMULATING = "accumulating"
    DONE = "done"
    FAILED = "failed"


class OutcomeKind(str, Enum):
    DATA_READY = "pdfParser_dataReady"
    DATA_ERROR = "pdfParser_dataError"


class ParseJobState(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class ParseOutcome:
    """
    Terminal result of one load/parse_buffer session.

    ``payload`` is ``{"formImage": <merged result>}`` for DATA_READY and
    ``{"parserError": <detail>}`` for DATA_ERROR.
    """

    kind: OutcomeKind
    payload: Dict[str, Any]
    parser_id: Optional[int] = None

    @property
    def ok(self) -> bool:
        return self.kind == OutcomeKind.DATA_READY

    @property
    def form_image(self) -> Optional[Dict[str, Any]]:
        return self.payload.get("formImage") if self.ok else None

    @property
    def parser_error(self) -> Any:
        return None if self.ok else self.payload.get("parserError")

    @classmethod
    def data_ready(cls, result: Dict[str, Any], parser_id: Optional[int] = None) -> "ParseOutcome":
        return cls(kind=OutcomeKind.DATA_READY, payload={"formImage": result}, parser_id=parser_id)

    @classmethod
    def data_error(cls, detail: Any, parser_id: Optional[int] = None) -> "ParseOutcome":
        return cls(kind=OutcomeKind.DATA_ERROR, payload={"parserError": detail}, parser_id=parser_id)


@dataclass
class ParseJobRecord:
    id: str
    file_path: str
    state: ParseJobState = ParseJobState.QUEUED
    error_message: Optional[str] = None
    output_path: Optional[str] = None
    started_at: Optional[datetime] = None
    updated_at: datetime = field(default_factory=datetime.utcnow)
    config_json: Dict[str, Any] = field(default_factory=dict)
