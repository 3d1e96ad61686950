"""
lumenflow-core — consistency plane

File: src/lumenflow_core/consistency/__init__.py

Purpose
- Divergence detection, repair, duplicate-id remediation and zombie recovery.
"""

from lumenflow_core.consistency.detector import (
    ConsistencyChecker,
    ConsistencyReport,
    ConsistencyViolation,
    ViolationKind,
    ViolationType,
)
from lumenflow_core.consistency.duplicates import (
    DuplicateGroup,
    DuplicateReport,
    IdRemap,
    remediate_duplicates,
)
from lumenflow_core.consistency.recovery import (
    RecoveryCounter,
    RecoveryError,
    RecoveryEscalationError,
    RecoveryOutcome,
    ZombieRecovery,
)
from lumenflow_core.consistency.repair import RepairEngine, RepairResult

__all__ = [
    "ConsistencyChecker",
    "ConsistencyReport",
    "ConsistencyViolation",
    "DuplicateGroup",
    "DuplicateReport",
    "IdRemap",
    "RecoveryCounter",
    "RecoveryError",
    "RecoveryEscalationError",
    "RecoveryOutcome",
    "RepairEngine",
    "RepairResult",
    "ViolationKind",
    "ViolationType",
    "ZombieRecovery",
    "remediate_duplicates",
]
