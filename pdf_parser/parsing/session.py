from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Mapping, Optional

from .errors import ParseError
from .models import ParseOutcome, SessionState

logger = logging.getLogger(__name__)

OutcomeCallback = Callable[[ParseOutcome], None]


class ResultBuilder:
    """
    Accumulates engine payloads with a shallow merge.

    Top-level keys of each payload are copied into the result; a key seen
    again replaces the earlier value (later key wins). Nested values are not
    merged.
    """

    def __init__(self):
        self._result: Dict[str, Any] = {}

    def merge(self, payload: Mapping[str, Any]) -> Dict[str, Any]:
        self._result = {**self._result, **payload}
        return self._result

    def build(self) -> Dict[str, Any]:
        return self._result


@dataclass
class ParseSession:
    """
    Mutable state of one load/parse_buffer call, from start to a terminal outcome.
    """

    parser_id: int
    password: Optional[str] = None
    state: SessionState = SessionState.IDLE
    builder: Optional[ResultBuilder] = None
    outcome: Optional[ParseOutcome] = None
    future: Optional[asyncio.Future] = None
    on_outcome: Optional[OutcomeCallback] = None
    events: int = field(default=0)

    @property
    def result(self) -> Optional[Dict[str, Any]]:
        return self.builder.build() if self.builder is not None else None

    @property
    def terminal(self) -> bool:
        return self.state in (SessionState.DONE, SessionState.FAILED)


def start_session(session: ParseSession) -> None:
    session.builder = ResultBuilder()
    session.state = SessionState.ACCUMULATING


def clear_session(session: ParseSession) -> None:
    session.builder = None


def deliver_outcome(session: ParseSession, outcome: ParseOutcome) -> None:
    session.outcome = outcome
    if session.future is not None and not session.future.done():
        session.future.set_result(outcome)
    if session.on_outcome is not None:
        session.on_outcome(outcome)


def handle_parse_data(session: ParseSession, payload: Optional[Mapping[str, Any]]) -> None:
    if session.terminal:
        logger.debug("parser %s: ignoring data after session end", session.parser_id)
        return
    session.events += 1
    if payload is None:
        # end of parsed data
        logger.info("PDF parsing completed.")
        session.state = SessionState.DONE
        deliver_outcome(session, ParseOutcome.data_ready(session.result, parser_id=session.parser_id))
        return
    session.builder.merge(payload)


def handle_parse_error(session: ParseSession, detail: Any) -> None:
    if session.terminal:
        logger.debug("parser %s: ignoring error after session end: %s", session.parser_id, detail)
        return
    session.events += 1
    session.state = SessionState.FAILED
    clear_session(session)
    logger.warning("parser %s: parsing failed: %s", session.parser_id, detail)
    deliver_outcome(session, ParseOutcome.data_error(detail, parser_id=session.parser_id))


def fail_unfinished(session: ParseSession) -> None:
    """Close a session whose engine returned without an end-of-data marker."""
    if session.terminal:
        return
    handle_parse_error(session, ParseError("engine finished without end-of-data marker"))


class EventBridge:
    """
    Sink handed to the parsing engine for one session.

    Engine events are forwarded to the session handlers. Once detached (on
    ``destroy``), late events from the engine are dropped.
    """

    def __init__(self, session: ParseSession):
        self.session = session
        self.attached = True

    def on_parse_data(self, payload: Optional[Mapping[str, Any]]) -> None:
        if self.attached:
            handle_parse_data(self.session, payload)

    def on_parse_error(self, detail: Any) -> None:
        if self.attached:
            handle_parse_error(self.session, detail)

    def detach(self) -> None:
        self.attached = False
        self.session.on_outcome = None
