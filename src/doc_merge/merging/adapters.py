import json
import uuid
from collections.abc import Iterable
from datetime import datetime, timezone
from pathlib import Path

from .interfaces import BlobStore, JobRepository, TemplateStore
from .models import MergeJob, TemplateRecord


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class LocalBlobStore(BlobStore):
    """Stores objects as files below a base directory, keyed by relative path."""

    def __init__(self, base_dir: str) -> None:
        self._base = Path(base_dir).resolve()

    def _path(self, key: str) -> Path:
        p = (self._base / key).resolve()
        if not p.is_relative_to(self._base):
            raise ValueError(f"key escapes storage root: {key!r}")
        return p

    def get(self, key: str) -> bytes:
        return self._path(key).read_bytes()

    def put(self, key: str, content: bytes, content_type: str) -> str:
        p = self._path(key)
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_bytes(content)
        return str(p)

    def exists(self, key: str) -> bool:
        return self._path(key).is_file()


class LocalTemplateStore(TemplateStore):
    def __init__(self, templates_dir: str) -> None:
        self._base = Path(templates_dir).resolve()

    def _record_path(self, template_id: str) -> Path:
        return self._base / f"{template_id}.json"

    def get(self, template_id: str) -> TemplateRecord | None:
        # Ids are generated here; anything else cannot name a record.
        try:
            uuid.UUID(template_id)
        except ValueError:
            return None
        p = self._record_path(template_id)
        if not p.exists():
            return None
        with p.open("r", encoding="utf-8") as f:
            data = json.load(f)
        return TemplateRecord(id=data["id"], stored_name=data["name"], fields=frozenset(data.get("fields", [])))

    def create(self, stored_name: str, fields: Iterable[str]) -> TemplateRecord:
        record = TemplateRecord(id=str(uuid.uuid4()), stored_name=stored_name, fields=frozenset(fields))
        p = self._record_path(record.id)
        p.parent.mkdir(parents=True, exist_ok=True)
        with p.open("w", encoding="utf-8") as f:
            json.dump(
                {"id": record.id, "name": stored_name, "fields": sorted(record.fields), "created_at": _utcnow()},
                f,
                ensure_ascii=False,
                indent=2,
            )
        return record


class LocalJobRepository(JobRepository):
    def __init__(self, jobs_dir: str) -> None:
        self._base = Path(jobs_dir).resolve()

    def job_dir(self, job_id: str) -> str:
        return str(self._base / job_id)

    def create(self, job: MergeJob) -> str:
        job_id = str(uuid.uuid4())
        record: dict[str, object] = {"id": job_id, **job.to_dict(), "created_at": _utcnow()}
        p = Path(self.job_dir(job_id)) / "job.json"
        p.parent.mkdir(parents=True, exist_ok=True)
        with p.open("w", encoding="utf-8") as f:
            json.dump(record, f, ensure_ascii=False, indent=2)
        return job_id

    def load(self, job_id: str) -> dict[str, object]:
        try:
            uuid.UUID(job_id)
        except ValueError:
            raise FileNotFoundError("job not found") from None
        p = Path(self.job_dir(job_id)) / "job.json"
        if not p.exists():
            raise FileNotFoundError("job not found")
        with p.open("r", encoding="utf-8") as f:
            return json.load(f)
