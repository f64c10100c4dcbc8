from __future__ import annotations

import asyncio
import logging
import os
from functools import partial
from typing import Any, Dict, List, Optional, Set, Union

from .buffer_cache import make_cache_key
from .engine import DoclingParsingEngine, ParsingEngine
from .errors import FileAccessError, ParseError, ParserDestroyedError
from .logging_utils import set_verbosity
from .read_pipeline import Reader, ReadPipeline, read_file_bytes
from .services import ParserServices, default_services
from .session import (
    EventBridge,
    OutcomeCallback,
    ParseSession,
    fail_unfinished,
    handle_parse_error,
    start_session,
)
from .streams import PARSER_STREAM_BUFFER_SIZE, ContentStream, ParserStream

logger = logging.getLogger(__name__)


class PDFParser:
    """
    Loads one PDF at a time (by path or from a buffer) and merges the parsing
    engine's output into a single ``formImage`` result.

    Raw file bytes are cached in the shared ``ParserServices.cache`` under
    ``<absolute path><mtime ms>`` so an unchanged file is read from disk only
    once per process. ``load`` and ``parse_buffer`` must run inside an asyncio
    event loop; each returns a future resolving to the session's
    ``ParseOutcome`` (data-ready or data-error, exactly one per call). The
    optional ``on_outcome`` callback receives the same outcomes.

    ``data`` is undefined until a terminal outcome fires: it may be empty or
    partially merged while the engine is still producing output.
    """

    def __init__(
        self,
        context: Any = None,
        need_raw_text: bool = False,
        password: Optional[str] = None,
        engine: Optional[ParsingEngine] = None,
        services: Optional[ParserServices] = None,
        on_outcome: Optional[OutcomeCallback] = None,
        reader: Reader = read_file_bytes,
    ):
        self.services = services if services is not None else default_services()
        self._id = self.services.ids.next_id()
        # hosting context (web service); None when used from the command line
        self._context = context
        self._password = password
        self._engine = engine if engine is not None else DoclingParsingEngine(need_raw_text=need_raw_text)
        self._pipeline = ReadPipeline(reader=reader)
        self._on_outcome = on_outcome

        self._file_path: Optional[str] = None
        self._file_mtime: Optional[float] = None
        self._session: Optional[ParseSession] = None
        self._sessions: List[ParseSession] = []
        self._bridges: List[EventBridge] = []
        self._tasks: Set[asyncio.Task] = set()
        self._destroyed = False

    @property
    def id(self) -> int:
        return self._id

    @property
    def name(self) -> str:
        return f"{type(self).__name__}_{self._id}"

    @property
    def data(self) -> Optional[Dict[str, Any]]:
        return self._session.result if self._session is not None else None

    @property
    def file_path(self) -> Optional[str]:
        return self._file_path

    @property
    def file_mtime(self) -> Optional[float]:
        return self._file_mtime

    @property
    def bin_buffer_key(self) -> Optional[str]:
        if self._file_path is None or self._file_mtime is None:
            return None
        return make_cache_key(self._file_path, self._file_mtime)

    @property
    def session(self) -> Optional[ParseSession]:
        return self._session

    @property
    def outcome(self) -> Optional[asyncio.Future]:
        return self._session.future if self._session is not None else None

    def _ensure_alive(self) -> None:
        if self._destroyed:
            raise ParserDestroyedError(f"{self.name} has been destroyed")

    def _new_session(self) -> ParseSession:
        session = ParseSession(
            parser_id=self._id,
            password=self._password,
            future=asyncio.get_running_loop().create_future(),
            on_outcome=self._on_outcome,
        )
        self._sessions = [s for s in self._sessions if not s.terminal]
        self._sessions.append(session)
        self._session = session
        return session

    def _start_parsing(self, session: ParseSession, buffer: bytes) -> None:
        start_session(session)
        bridge = EventBridge(session)
        self._bridges = [b for b in self._bridges if not b.session.terminal]
        self._bridges.append(bridge)
        task = asyncio.get_running_loop().create_task(self._run_engine(self._engine, bridge, buffer))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run_engine(self, engine: ParsingEngine, bridge: EventBridge, buffer: bytes) -> None:
        try:
            await engine.parse_data(buffer, bridge.session.password, bridge)
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # noqa: BLE001
            logger.exception("%s: parsing engine raised", self.name)
            bridge.on_parse_error(ParseError(str(exc), detail=exc))
        if bridge.attached:
            fail_unfinished(bridge.session)

    def _process_pdf_content(
        self,
        session: ParseSession,
        cache_key: str,
        file_path: str,
        err: Optional[OSError],
        data: Optional[bytes],
    ) -> None:
        logger.info("Load PDF file status:%s", "Error!" if err else "Success!")
        if self._destroyed:
            return
        if err is not None:
            logger.warning("%s: could not read %s: %s", self.name, file_path, err)
            handle_parse_error(session, err)
            return
        self.services.cache.put(cache_key, data, self._id)
        self._start_parsing(session, data)

    # public API
    def load(self, pdf_file_path: Union[str, os.PathLike], verbosity: Optional[int] = None) -> asyncio.Future:
        self._ensure_alive()
        if verbosity is not None:
            set_verbosity(verbosity)
        logger.info("about to load PDF file %s", pdf_file_path)

        file_path = os.path.abspath(os.fspath(pdf_file_path))
        try:
            stat = os.stat(file_path)
        except OSError as exc:
            raise FileAccessError(file_path, exc.strerror or str(exc)) from exc
        self._file_path = file_path
        self._file_mtime = stat.st_mtime_ns / 1_000_000

        session = self._new_session()
        cache_key = self.bin_buffer_key
        cache = self.services.cache
        if cache.has(cache_key):
            logger.debug("%s: cache hit for %s", self.name, cache_key)
            self._start_parsing(session, cache.get(cache_key))
        else:
            self._pipeline.push(file_path, partial(self._process_pdf_content, session, cache_key, file_path))
        return session.future

    def parse_buffer(self, pdf_buffer: bytes) -> asyncio.Future:
        """Parse bytes supplied by the caller. The buffer cache is not touched."""
        self._ensure_alive()
        session = self._new_session()
        self._start_parsing(session, bytes(pdf_buffer))
        return session.future

    def create_parser_stream(self) -> ParserStream:
        self._ensure_alive()
        return ParserStream(self, buffer_size=PARSER_STREAM_BUFFER_SIZE)

    def get_raw_text_content(self) -> str:
        self._ensure_alive()
        return self._engine.get_raw_text_content()

    def get_raw_text_content_stream(self, chunk_size: Optional[int] = None) -> ContentStream:
        return ParserStream.create_content_stream(self.get_raw_text_content(), chunk_size=chunk_size)

    def get_all_fields_types(self) -> List[Dict[str, Any]]:
        self._ensure_alive()
        return self._engine.get_all_fields_types()

    def get_all_fields_types_stream(self) -> ContentStream:
        return ParserStream.create_content_stream(self.get_all_fields_types())

    def get_merged_text_blocks_if_needed(self) -> Dict[str, Any]:
        self._ensure_alive()
        return {"formImage": self._engine.get_merged_text_blocks_if_needed()}

    def get_merged_text_blocks_stream(self) -> ContentStream:
        return ParserStream.create_content_stream(self.get_merged_text_blocks_if_needed())

    def destroy(self) -> None:
        """
        Release the engine, the read pipeline and the hosting context. Cache
        entries are left in place for other parsers. Call at most once.
        """
        self._ensure_alive()
        self._on_outcome = None
        for bridge in self._bridges:
            bridge.detach()
        self._bridges = []
        for session in self._sessions:
            session.on_outcome = None
            if session.future is not None and not session.future.done():
                session.future.cancel()
        self._sessions = []
        for task in list(self._tasks):
            task.cancel()
        self._pipeline.close()

        if self._context is not None:
            self._context.destroy()
            self._context = None

        self._file_path = None
        self._file_mtime = None
        self._session = None

        self._engine.destroy()
        self._engine = None
        self._destroyed = True
