"""
Pipeline integrity: event coordinates, the event log, chain checksums and
the checksum registry.
"""

from .checksum import (
    PipelineChecksum,
    PipelineReceipt,
    compute_chain_hash,
    compute_data_checksum,
    compute_pipeline_checksum,
    compute_pipeline_receipt,
    compute_step_hash,
    verify_receipt,
)
from .constants import PipelineType
from .definitions import PIPELINE_DEFINITIONS, PipelineDefinition, get_pipeline_definition
from .event_id import ParsedEventId, decode_event_id, encode_event_id, is_valid_event_id
from .event_log import EventLog, InMemoryPipelineStorage, PipelineStorage
from .events import (
    EventStatus,
    PipelineEvent,
    PipelineStep,
    create_pipeline_event,
    parse_pipeline_event,
)
from .health import HandlerHealth, HandlerHealthStatus, compute_handler_health
from .registry import (
    ChecksumRegistryEntry,
    ChecksumRegistryStorage,
    InMemoryChecksumRegistryStorage,
    create_registry_entry,
)
from .traced_step import traced_step
from .tracker import IssueReport, PipelineTracker, StatusSummary, TrackResult

__all__ = [
    "ChecksumRegistryEntry",
    "ChecksumRegistryStorage",
    "EventLog",
    "EventStatus",
    "HandlerHealth",
    "HandlerHealthStatus",
    "InMemoryChecksumRegistryStorage",
    "InMemoryPipelineStorage",
    "IssueReport",
    "PIPELINE_DEFINITIONS",
    "ParsedEventId",
    "PipelineChecksum",
    "PipelineDefinition",
    "PipelineEvent",
    "PipelineReceipt",
    "PipelineStep",
    "PipelineStorage",
    "PipelineTracker",
    "PipelineType",
    "StatusSummary",
    "TrackResult",
    "compute_chain_hash",
    "compute_data_checksum",
    "compute_handler_health",
    "compute_pipeline_checksum",
    "compute_pipeline_receipt",
    "compute_step_hash",
    "create_pipeline_event",
    "create_registry_entry",
    "decode_event_id",
    "encode_event_id",
    "get_pipeline_definition",
    "is_valid_event_id",
    "parse_pipeline_event",
    "traced_step",
    "verify_receipt",
]
