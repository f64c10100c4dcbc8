from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from redis import Redis
from rq import Queue, Worker

from .buffer_cache import MAX_BIN_BUFFER_COUNT
from .engine import DoclingParsingEngine
from .repository import SqlAlchemyParsingRepository
from .services import default_services
from .storage import LocalOutputStorage, StoragePaths
from .worker import ParsingWorker


@dataclass
class WorkerConfig:
    database_url: str
    output_root: str
    need_raw_text: bool = False
    perform_ocr: bool = False
    password: Optional[str] = None
    engine_version: str = "docling-latest"
    write_raw_text: bool = False
    write_fields_types: bool = False
    max_cache_entries: int = MAX_BIN_BUFFER_COUNT


def build_worker(config: WorkerConfig) -> ParsingWorker:
    services = default_services(config.max_cache_entries)
    return ParsingWorker(
        repository=SqlAlchemyParsingRepository(config.database_url),
        storage=LocalOutputStorage(StoragePaths(Path(config.output_root))),
        engine_factory=lambda: DoclingParsingEngine(
            need_raw_text=config.need_raw_text or config.write_raw_text,
            perform_ocr=config.perform_ocr,
            engine_version=config.engine_version,
        ),
        services=services,
        password=config.password,
        write_raw_text=config.write_raw_text,
        write_fields_types=config.write_fields_types,
    )


def run_parse_job(job_id: str, config: WorkerConfig) -> None:
    """
    RQ task entrypoint. Builds the worker and executes a parse job. Parsers in
    one worker process share the process-wide buffer cache.
    """
    build_worker(config).run_job(job_id)


class RQJobQueue:
    """
    Redis-backed job queue using RQ. The queue pushes jobs to Redis and workers
    can be started by calling `work()` in a dedicated process.
    """

    def __init__(self, redis_url: str = "redis://localhost:6379/0", queue_name: str = "parse-jobs"):
        self.redis = Redis.from_url(redis_url)
        self.queue = Queue(queue_name, connection=self.redis)

    def enqueue_parse_job(self, job_id: str, config: WorkerConfig):
        """
        Enqueue a parsing job. RQ job_id is set to parse job id for idempotency.
        """
        return self.queue.enqueue(run_parse_job, job_id, config, job_id=job_id, retry=None)

    def work(self):
        worker = Worker([self.queue], connection=self.redis)
        worker.work(with_scheduler=True)
