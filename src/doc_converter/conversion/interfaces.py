from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Protocol

from .models import ConversionOutcome, Job


class ConverterGateway(Protocol):
    def convert(self, input_path: Path, output_dir: Path) -> ConversionOutcome:
        """Convert the given input file to HTML inside ``output_dir``.
        This is a blocking call; callers should offload to threads if needed.
        Never raises for process failures; they come back as a failed outcome.
        """


class JobStoreGateway(Protocol):
    def create(self, job: Job) -> None:
        ...

    def update(
        self,
        job_id: str,
        *,
        status: str,
        updated_at: datetime,
        error: str = "",
        converted_file: str = "",
    ) -> None:
        ...

    def get(self, job_id: str) -> Job:
        ...

    def list_recent(self, limit: int) -> list[Job]:
        ...

    def list_older_than(self, cutoff: datetime) -> list[Job]:
        ...

    def delete(self, job_id: str) -> None:
        ...


class WorkspaceGateway(Protocol):
    def paths(self, job_id: str) -> "JobPaths":
        ...

    def prepare(self, job_id: str) -> "JobPaths":
        ...

    def remove(self, job_id: str) -> None:
        ...


class Observer(Protocol):
    async def send_text(self, data: str) -> None:
        ...


@dataclass(frozen=True)
class JobPaths:
    job_dir: Path
    original_dir: Path
    converted_dir: Path

    def original_path(self, filename: str) -> Path:
        return self.original_dir / filename

    def converted_path(self, filename: str) -> Path:
        """Conventional output location: ``<basename-without-extension>.html``."""
        return self.converted_dir / f"{Path(filename).stem}.html"
