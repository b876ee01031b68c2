import logging
import shutil
import subprocess
from pathlib import Path

from .interfaces import ConverterGateway, JobPaths, WorkspaceGateway
from .models import ConversionOutcome

logger = logging.getLogger(__name__)

ERROR_MARKERS = ("Error:", "failed:")
GENERIC_FAILURE = "Conversion failed"


def extract_diagnostic(output: str) -> str:
    """Return the text from the earliest error marker up to the next line break."""
    hits = [idx for idx in (output.find(m) for m in ERROR_MARKERS) if idx != -1]
    if not hits:
        return GENERIC_FAILURE
    tail = output[min(hits):]
    line = tail.split("\n", 1)[0].rstrip("\r")
    return line or GENERIC_FAILURE


def has_error_marker(output: str) -> bool:
    return any(marker in output for marker in ERROR_MARKERS)


class LibreOfficeConverter(ConverterGateway):
    def __init__(self, binary: str = "libreoffice", *, timeout: float | None = 1800) -> None:
        self._binary = binary
        self._timeout = timeout

    def command(self, input_path: Path, output_dir: Path) -> list[str]:
        return [
            self._binary,
            "--convert-to", "html:HTML:EmbedImages",
            "--headless",
            "--outdir", str(output_dir),
            str(input_path),
        ]

    def convert(self, input_path: Path, output_dir: Path) -> ConversionOutcome:
        cmd = self.command(input_path, output_dir)
        try:
            proc = subprocess.run(
                cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                errors="replace",
                timeout=self._timeout,
            )
        except FileNotFoundError:
            logger.error(f"Converter binary not found: {self._binary}")
            return ConversionOutcome.failure(f"{GENERIC_FAILURE}: {self._binary} not found")
        except subprocess.TimeoutExpired as e:
            output = _decode(e.output)
            logger.error(f"Converter timed out after {self._timeout}s: {' '.join(cmd)}")
            return ConversionOutcome.failure(
                f"{GENERIC_FAILURE}: timed out after {self._timeout:g}s", output
            )
        except OSError as e:
            logger.error(f"Converter could not be started: {e}")
            return ConversionOutcome.failure(f"{GENERIC_FAILURE}: {e}")

        output = proc.stdout or ""
        # The tool sometimes reports errors while still exiting 0
        if proc.returncode != 0 or has_error_marker(output):
            logger.error(
                f"Converter failed (exit {proc.returncode}) for {' '.join(cmd)}: {output.strip()}"
            )
            return ConversionOutcome.failure(extract_diagnostic(output), output)
        logger.debug(f"Converter output: {output.strip()}")
        return ConversionOutcome.success(output)


def _decode(raw: bytes | str | None) -> str:
    if raw is None:
        return ""
    if isinstance(raw, bytes):
        return raw.decode("utf-8", errors="replace")
    return raw


class LocalWorkspace(WorkspaceGateway):
    """Per-job working directories under a single root, named by job id."""

    def __init__(self, root: str | Path) -> None:
        self._root = Path(root).resolve()

    @property
    def root(self) -> Path:
        return self._root

    def ensure_root(self) -> None:
        self._root.mkdir(parents=True, exist_ok=True)

    def paths(self, job_id: str) -> JobPaths:
        job_dir = self._root / job_id
        return JobPaths(
            job_dir=job_dir,
            original_dir=job_dir / "original",
            converted_dir=job_dir / "converted",
        )

    def prepare(self, job_id: str) -> JobPaths:
        paths = self.paths(job_id)
        for d in (paths.original_dir, paths.converted_dir):
            d.mkdir(mode=0o755, parents=True, exist_ok=True)
        return paths

    def remove(self, job_id: str) -> None:
        job_dir = self.paths(job_id).job_dir
        if not job_dir.exists():
            return
        shutil.rmtree(job_dir)
