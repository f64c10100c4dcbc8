"""
Parsing subsystem exports.
"""

from .buffer_cache import MAX_BIN_BUFFER_COUNT, BinaryBufferCache, make_cache_key
from .engine import DoclingParsingEngine, DummyParsingEngine, ParseEventSink, ParsingEngine
from .errors import FileAccessError, ParseError, ParserDestroyedError, PDFParserError
from .identity import IdAllocator
from .job_queue import RQJobQueue, WorkerConfig, build_worker, run_parse_job
from .models import OutcomeKind, ParseJobRecord, ParseJobState, ParseOutcome, SessionState
from .parser import PDFParser
from .read_pipeline import ReadPipeline, ReadTask
from .repository import InMemoryParsingRepository, ParsingRepository, SqlAlchemyParsingRepository
from .services import ParserServices, default_services
from .session import EventBridge, ParseSession, ResultBuilder
from .storage import LocalOutputStorage, StoragePaths
from .streams import ContentStream, ParserStream
from .worker import ParsingWorker

__all__ = [
    "BinaryBufferCache",
    "ContentStream",
    "DoclingParsingEngine",
    "DummyParsingEngine",
    "EventBridge",
    "FileAccessError",
    "IdAllocator",
    "InMemoryParsingRepository",
    "LocalOutputStorage",
    "MAX_BIN_BUFFER_COUNT",
    "OutcomeKind",
    "PDFParser",
    "PDFParserError",
    "ParseError",
    "ParseEventSink",
    "ParseJobRecord",
    "ParseJobState",
    "ParseOutcome",
    "ParseSession",
    "ParserDestroyedError",
    "ParserServices",
    "ParserStream",
    "ParsingEngine",
    "ParsingRepository",
    "ParsingWorker",
    "RQJobQueue",
    "ReadPipeline",
    "ReadTask",
    "ResultBuilder",
    "SessionState",
    "SqlAlchemyParsingRepository",
    "StoragePaths",
    "WorkerConfig",
    "build_worker",
    "default_services",
    "make_cache_key",
    "run_parse_job",
]
