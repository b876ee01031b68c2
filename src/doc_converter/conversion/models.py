from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone


class JobStatus:
    PENDING = "pending"
    COMPLETE = "complete"
    FAILED = "failed"

    TERMINAL = frozenset({COMPLETE, FAILED})


class EventType:
    JOB_UPDATE = "job_update"
    JOB_DELETE = "job_delete"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def isoformat(ts: datetime) -> str:
    return ts.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def next_timestamp(previous: datetime) -> datetime:
    """Current time, bumped past ``previous`` so successive writes strictly increase."""
    now = utcnow()
    if now <= previous:
        return previous + timedelta(microseconds=1)
    return now


@dataclass(frozen=True)
class Job:
    id: str
    original_file: str
    status: str
    created_at: datetime
    updated_at: datetime
    converted_file: str = ""
    error: str = ""

    @classmethod
    def new(cls, job_id: str, original_file: str) -> "Job":
        now = utcnow()
        return cls(
            id=job_id,
            original_file=original_file,
            status=JobStatus.PENDING,
            created_at=now,
            updated_at=now,
        )

    @property
    def is_terminal(self) -> bool:
        return self.status in JobStatus.TERMINAL

    def with_changes(self, **changes: object) -> "Job":
        return replace(self, **changes)  # type: ignore[arg-type]

    def to_dict(self) -> dict[str, object]:
        data: dict[str, object] = {
            "id": self.id,
            "original_file": self.original_file,
            "status": self.status,
            "created_at": isoformat(self.created_at),
            "updated_at": isoformat(self.updated_at),
        }
        # Empty fields are omitted on the wire
        if self.converted_file:
            data["converted_file"] = self.converted_file
        if self.error:
            data["error"] = self.error
        return data


@dataclass(frozen=True)
class ConversionOutcome:
    """Classified result of one converter invocation."""

    ok: bool
    diagnostic: str = ""
    output: str = ""

    @classmethod
    def success(cls, output: str = "") -> "ConversionOutcome":
        return cls(ok=True, output=output)

    @classmethod
    def failure(cls, diagnostic: str, output: str = "") -> "ConversionOutcome":
        return cls(ok=False, diagnostic=diagnostic, output=output)


def job_update_event(job: Job) -> dict[str, object]:
    return {"type": EventType.JOB_UPDATE, "payload": job.to_dict()}


def job_delete_event(job_id: str) -> dict[str, object]:
    return {"type": EventType.JOB_DELETE, "job_id": job_id}
