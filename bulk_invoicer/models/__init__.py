"""Domain models for the bulk invoicing engine.

Records and schema mapping, profile configuration, classification / aggregation
results, validation reports and structured error records.
"""

from .batch_result import BatchPreview, EmissionReport, EmissionStatus, GroupOutcome, ProposalSummary
from .config_models import (
    ClassificationRule,
    CounterpartyProfile,
    DatabaseConfig,
    EmissionConfig,
    ImportConfig,
    RuleSet,
    RuleVariant,
    SessionConfig,
    TaxComponent,
)
from .error_record import ErrorRecord
from .groups import (
    AdjustmentVariant,
    ClassificationWarning,
    EmptyGroupSkipped,
    Group,
    GroupKey,
    IssuedDocument,
    LineItem,
    SynthesizedDocument,
    TaxProfile,
)
from .records import RawRecord, SchemaMapping
from .validation import ValidationError, ValidationReport

__all__ = [
    # Configuration models
    "ClassificationRule",
    "CounterpartyProfile",
    "DatabaseConfig",
    "EmissionConfig",
    "ImportConfig",
    "RuleSet",
    "RuleVariant",
    "SessionConfig",
    "TaxComponent",
    # Processing models
    "RawRecord",
    "SchemaMapping",
    "ValidationError",
    "ValidationReport",
    "AdjustmentVariant",
    "GroupKey",
    "Group",
    "TaxProfile",
    "LineItem",
    "SynthesizedDocument",
    "IssuedDocument",
    "ClassificationWarning",
    "EmptyGroupSkipped",
    # Results
    "BatchPreview",
    "ProposalSummary",
    "EmissionStatus",
    "GroupOutcome",
    "EmissionReport",
    "ErrorRecord",
]
