from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

logger = logging.getLogger(__name__)


@dataclass
class StoragePaths:
    root: Path

    def job_dir(self, job_id: str) -> Path:
        return self.root / "jobs" / str(job_id)

    def output_path(self, job_id: str) -> Path:
        return self.job_dir(job_id) / "output.json"

    def raw_text_path(self, job_id: str) -> Path:
        return self.job_dir(job_id) / "content.txt"

    def fields_path(self, job_id: str) -> Path:
        return self.job_dir(job_id) / "fields.json"


class LocalOutputStorage:
    """
    Filesystem layout for parser outputs: one directory per job holding the
    ``formImage`` JSON and, optionally, the raw text and field types.
    """

    def __init__(self, storage_paths: StoragePaths):
        self.paths = storage_paths

    def ensure_job_dir(self, job_id: str) -> Path:
        base = self.paths.job_dir(job_id)
        base.mkdir(parents=True, exist_ok=True)
        return base

    def _write_json(self, target: Path, payload: Any) -> Path:
        with target.open("w", encoding="utf-8") as f:
            json.dump(payload, f, ensure_ascii=False, indent=2, default=str)
        return target

    def write_output(self, job_id: str, payload: dict) -> Path:
        self.ensure_job_dir(job_id)
        target = self._write_json(self.paths.output_path(job_id), payload)
        logger.info("wrote parser output for job %s to %s", job_id, target)
        return target

    def write_raw_text(self, job_id: str, text: str) -> Path:
        self.ensure_job_dir(job_id)
        target = self.paths.raw_text_path(job_id)
        target.write_text(text, encoding="utf-8")
        return target

    def write_fields_types(self, job_id: str, fields: Any) -> Path:
        self.ensure_job_dir(job_id)
        return self._write_json(self.paths.fields_path(job_id), fields)

    def read_output(self, job_id: str) -> Optional[dict]:
        path = self.paths.output_path(job_id)
        if not path.exists():
            return None
        with path.open("r", encoding="utf-8") as f:
            return json.load(f)

    def output_exists(self, job_id: str) -> bool:
        return self.paths.output_path(job_id).exists()
