"""Conflict-resolution policies and their translation into resolver config."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional, Union

from .exceptions import ConfigValidationError


class ConflictDetectionType(str, Enum):
    VERSION = "VERSION"
    NONE = "NONE"


class ConflictHandlerType(str, Enum):
    OPTIMISTIC_CONCURRENCY = "OPTIMISTIC_CONCURRENCY"
    AUTOMERGE = "AUTOMERGE"
    LAMBDA = "LAMBDA"


@dataclass(frozen=True)
class AutomergeStrategy:
    detection_type: ConflictDetectionType = ConflictDetectionType.VERSION


@dataclass(frozen=True)
class OptimisticConcurrencyStrategy:
    detection_type: ConflictDetectionType = ConflictDetectionType.VERSION


@dataclass(frozen=True)
class CustomConflictHandlerStrategy:
    """Resolve conflicts with a caller-owned Lambda function.

    The ARN is written into the generated template as-is, so it must be a
    literal rather than an unresolved CDK token.
    """

    conflict_handler_arn: str
    detection_type: ConflictDetectionType = ConflictDetectionType.VERSION


ConflictResolutionStrategy = Union[
    AutomergeStrategy, OptimisticConcurrencyStrategy, CustomConflictHandlerStrategy
]


@dataclass(frozen=True)
class ConflictResolution:
    """Project-wide strategy plus per-model overrides."""

    project: Optional[ConflictResolutionStrategy] = None
    models: Dict[str, ConflictResolutionStrategy] = field(default_factory=dict)


@dataclass(frozen=True)
class SyncConfig:
    conflict_detection: ConflictDetectionType
    conflict_handler: ConflictHandlerType
    lambda_conflict_handler_arn: Optional[str] = None

    def to_cfn(self) -> Dict[str, object]:
        config: Dict[str, object] = {
            "ConflictDetection": self.conflict_detection.value,
            "ConflictHandler": self.conflict_handler.value,
        }
        if self.lambda_conflict_handler_arn:
            config["LambdaConflictHandlerConfig"] = {
                "LambdaConflictHandlerArn": self.lambda_conflict_handler_arn
            }
        return config


@dataclass(frozen=True)
class ResolverConfig:
    project: Optional[SyncConfig] = None
    models: Dict[str, SyncConfig] = field(default_factory=dict)

    def for_model(self, model_name: str) -> Optional[SyncConfig]:
        return self.models.get(model_name, self.project)


def convert_to_sync_config(strategy: ConflictResolutionStrategy) -> SyncConfig:
    if isinstance(strategy, OptimisticConcurrencyStrategy):
        return SyncConfig(
            conflict_detection=strategy.detection_type,
            conflict_handler=ConflictHandlerType.OPTIMISTIC_CONCURRENCY,
        )
    if isinstance(strategy, AutomergeStrategy):
        return SyncConfig(
            conflict_detection=strategy.detection_type,
            conflict_handler=ConflictHandlerType.AUTOMERGE,
        )
    if isinstance(strategy, CustomConflictHandlerStrategy):
        if not strategy.conflict_handler_arn:
            raise ConfigValidationError("custom conflict handler requires a function ARN")
        return SyncConfig(
            conflict_detection=strategy.detection_type,
            conflict_handler=ConflictHandlerType.LAMBDA,
            lambda_conflict_handler_arn=strategy.conflict_handler_arn,
        )
    raise ConfigValidationError(
        f"Encountered unexpected conflict resolution strategy {type(strategy).__name__}"
    )


def convert_to_resolver_config(conflict_resolution: ConflictResolution) -> ResolverConfig:
    """Translate a conflict-resolution policy into the resolver config shape."""
    return ResolverConfig(
        project=(
            convert_to_sync_config(conflict_resolution.project)
            if conflict_resolution.project
            else None
        ),
        models={
            name: convert_to_sync_config(strategy)
            for name, strategy in conflict_resolution.models.items()
        },
    )
