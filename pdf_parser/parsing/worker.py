from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, Callable, List, Optional, Tuple

from .engine import ParsingEngine
from .errors import ParseError
from .models import ParseJobState, ParseOutcome
from .parser import PDFParser
from .repository import ParsingRepository
from .services import ParserServices, default_services
from .storage import LocalOutputStorage

logger = logging.getLogger(__name__)

EngineFactory = Callable[[], ParsingEngine]


class ParsingWorker:
    """
    Drives a parse job: load the job's PDF through a fresh ``PDFParser``, wait
    for its outcome, write the outputs and record the final job state.

    All parsers built by one worker share the same ``ParserServices``, so a file
    that was already read (same path and mtime) is served from the buffer cache.
    """

    def __init__(
        self,
        repository: ParsingRepository,
        storage: LocalOutputStorage,
        engine_factory: EngineFactory,
        services: Optional[ParserServices] = None,
        password: Optional[str] = None,
        write_raw_text: bool = False,
        write_fields_types: bool = False,
    ):
        self.repo = repository
        self.storage = storage
        self.engine_factory = engine_factory
        self.services = services if services is not None else default_services()
        self.password = password
        self.write_raw_text = write_raw_text
        self.write_fields_types = write_fields_types

    def run_job(self, job_id: str) -> ParseOutcome:
        job = self.repo.get_job(job_id)
        if not job:
            raise ValueError(f"Parse job {job_id} not found")

        self.repo.update_job_state(job_id, state=ParseJobState.RUNNING, started_at=datetime.utcnow())
        try:
            outcome, raw_text, fields = asyncio.run(self._parse(job.file_path))
            if not outcome.ok:
                detail = outcome.parser_error
                raise ParseError(str(detail), detail=detail)

            output_path = self.storage.write_output(job.id, outcome.payload)
            if self.write_raw_text:
                self.storage.write_raw_text(job.id, raw_text)
            if self.write_fields_types:
                self.storage.write_fields_types(job.id, fields)

            self.repo.update_job_state(job_id, state=ParseJobState.COMPLETED, output_path=str(output_path))
            return outcome
        except Exception as exc:  # noqa: BLE001
            logger.warning("parse job %s failed: %s", job_id, exc)
            self.repo.update_job_state(job_id, state=ParseJobState.FAILED, error_message=str(exc))
            raise

    async def _parse(self, file_path: str) -> Tuple[ParseOutcome, str, List[Any]]:
        parser = PDFParser(
            password=self.password,
            engine=self.engine_factory(),
            services=self.services,
        )
        try:
            outcome = await parser.load(file_path)
            raw_text = parser.get_raw_text_content() if outcome.ok else ""
            fields = parser.get_all_fields_types() if outcome.ok else []
            return outcome, raw_text, fields
        finally:
            parser.destroy()
