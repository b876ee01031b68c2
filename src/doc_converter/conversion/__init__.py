"""
Domain layer for document conversion.
Provides gateways, the job lifecycle service, the observer registry and the
retention sweeper so front-ends (HTTP or others) can use the same core logic.
"""

from .adapters import LibreOfficeConverter, LocalWorkspace
from .interfaces import ConverterGateway, JobPaths, JobStoreGateway, Observer, WorkspaceGateway
from .models import ConversionOutcome, EventType, Job, JobStatus
from .observers import ObserverRegistry
from .service import ALLOWED_TYPES, ConversionService, validate_upload
from .store import SqlJobStore
from .sweeper import RetentionSweeper
