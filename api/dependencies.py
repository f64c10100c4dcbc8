from __future__ import annotations

import hashlib
import os
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pdf_parser.parsing import (
    MAX_BIN_BUFFER_COUNT,
    DoclingParsingEngine,
    LocalOutputStorage,
    ParserServices,
    ParsingRepository,
    ParsingWorker,
    RQJobQueue,
    SqlAlchemyParsingRepository,
    StoragePaths,
    WorkerConfig,
    default_services,
)


def _database_url() -> str:
    return os.getenv("DATABASE_URL", "sqlite+pysqlite:///./data/pdf_parser.db")


def _output_root() -> str:
    return os.getenv("OUTPUT_ROOT", "./data")


@lru_cache(maxsize=1)
def get_repo() -> ParsingRepository:
    return SqlAlchemyParsingRepository(_database_url())


@lru_cache(maxsize=1)
def get_storage() -> LocalOutputStorage:
    return LocalOutputStorage(StoragePaths(Path(_output_root())))


@lru_cache(maxsize=1)
def get_services() -> ParserServices:
    return default_services(int(os.getenv("PDF_CACHE_MAX_ENTRIES", str(MAX_BIN_BUFFER_COUNT))))


@lru_cache(maxsize=1)
def get_queue() -> Optional[RQJobQueue]:
    redis_url = os.getenv("REDIS_URL")
    if not redis_url:
        return None
    return RQJobQueue(redis_url=redis_url)


def build_worker_config(write_raw_text: bool = False, write_fields_types: bool = False) -> WorkerConfig:
    return WorkerConfig(
        database_url=_database_url(),
        output_root=_output_root(),
        engine_version=os.getenv("ENGINE_VERSION", "docling-latest"),
        max_cache_entries=get_services().cache.max_entries,
        write_raw_text=write_raw_text,
        write_fields_types=write_fields_types,
    )


def build_worker(config: WorkerConfig) -> ParsingWorker:
    return ParsingWorker(
        repository=get_repo(),
        storage=get_storage(),
        engine_factory=lambda: DoclingParsingEngine(
            need_raw_text=config.write_raw_text,
            engine_version=config.engine_version,
        ),
        services=get_services(),
        write_raw_text=config.write_raw_text,
        write_fields_types=config.write_fields_types,
    )


def build_job_id(file_path: str) -> str:
    digest = hashlib.md5(file_path.encode("utf-8")).hexdigest()[:8]
    stem = Path(file_path).stem.lower()
    slug = "".join(ch if ch.isalnum() else "-" for ch in stem).strip("-") or "pdf"
    return f"job-{slug}-{digest}"
