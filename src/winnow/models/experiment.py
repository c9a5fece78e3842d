# Copyright (c) Syntropy Systems
"""Models exchanged between the selection engine and its host."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Optional

from pydantic import Field, ValidationError, field_validator, model_validator

from winnow.errors import ConfigurationError

from .base import FrozenModel, WinnowBaseModel

if TYPE_CHECKING:
    from winnow.config import WinnowConfig
    from winnow.host import ScenarioRef

# Smallest replication limit that gives any meaningful result
MINIMUM_REPLICATION_LIMIT = 10


class Objective(str, Enum):
    """Direction in which a response is optimized."""

    MAXIMIZE = "maximize"
    MINIMIZE = "minimize"
    NONE = "none"

    def better(self, a: float, b: float) -> bool:
        """Return True if ``a`` is strictly better than ``b``."""
        if self is Objective.MAXIMIZE:
            return a > b
        if self is Objective.MINIMIZE:
            return a < b
        return False


class ReplicationStatus(str, Enum):
    """Status reported by the host for a replication."""

    RUNNING = "running"
    COMPLETED = "completed"
    CANCELED = "canceled"
    FAILED = "failed"
    PENDING = "pending"
    IDLE = "idle"

    @property
    def is_terminal(self) -> bool:
        """Whether the replication has been processed by the host."""
        return self in (
            ReplicationStatus.COMPLETED,
            ReplicationStatus.CANCELED,
            ReplicationStatus.FAILED,
        )


class ResponseDef(WinnowBaseModel):
    """An experiment response the host can report values for."""

    name: str
    objective: Objective = Objective.NONE
    primary: bool = False

    @field_validator("objective", mode="before")
    @classmethod
    def _normalize_objective(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().lower()
        return value


@dataclass(frozen=True)
class ReplicationJob:
    """A single replication submitted to the host."""

    scenario: ScenarioRef
    replication: int


@dataclass(frozen=True)
class ReplicationResult:
    """Outcome of a replication as reported by the host."""

    scenario: ScenarioRef
    replication: int
    status: ReplicationStatus
    error_message: Optional[str] = None


class ScenarioUpdate(FrozenModel):
    """Desired state for a host scenario.

    The engine never re-activates a scenario, so ``active`` may only be
    ``False`` (exclude) or ``None`` (leave unchanged).
    """

    replications_required: Optional[int] = Field(default=None, ge=0)
    active: Optional[bool] = None

    @field_validator("active")
    @classmethod
    def _only_deactivate(cls, value: Optional[bool]) -> Optional[bool]:
        if value is True:
            msg = "Scenarios can only be deactivated"
            raise ValueError(msg)
        return value


class ProcedureParameters(FrozenModel):
    """Immutable per-run configuration of a selection procedure."""

    confidence_level: float = Field(default=0.95, gt=0.0, lt=1.0)
    indifference_zone: float = Field(gt=0.0)
    replication_limit: int = Field(default=100, ge=MINIMUM_REPLICATION_LIMIT)

    # KN seed sample size
    min_replications: int = Field(default=10, ge=2)

    # GSP tuning
    first_stage_size: int = Field(default=20, ge=2)
    batch_size: int = Field(default=50, ge=1)
    rbar: int = Field(default=20, ge=1)
    group_threshold: int = Field(default=100, ge=1)
    screening_workers: Optional[int] = Field(default=None, ge=1)

    @property
    def alpha(self) -> float:
        """Probability of an incorrect selection."""
        return 1.0 - self.confidence_level

    @model_validator(mode="before")
    @classmethod
    def _require_indifference_zone(cls, data: Any) -> Any:
        if isinstance(data, dict) and data.get("indifference_zone") in (None, ""):
            msg = "A value is required for the indifference zone"
            raise ValueError(msg)
        return data

    @classmethod
    def build(cls, **values: Any) -> ProcedureParameters:
        """Validate parameters, raising ConfigurationError on bad input."""
        try:
            return cls.model_validate(values)
        except ValidationError as e:
            problems = "; ".join(
                f"{'.'.join(str(p) for p in err['loc']) or 'parameters'}: {err['msg']}"
                for err in e.errors()
            )
            msg = f"Invalid procedure parameters: {problems}"
            raise ConfigurationError(msg) from e

    @classmethod
    def from_config(cls, config: WinnowConfig, **overrides: Any) -> ProcedureParameters:
        """Build parameters from a loaded config, with explicit overrides."""
        values: dict[str, Any] = {
            "confidence_level": config.confidence_level,
            "indifference_zone": config.indifference_zone,
            "replication_limit": config.replication_limit,
            "min_replications": config.min_replications,
            "first_stage_size": config.first_stage_size,
            "batch_size": config.batch_size,
            "rbar": config.rbar,
            "group_threshold": config.group_threshold,
            "screening_workers": config.screening_workers,
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls.build(**values)


class Guarantee(str, Enum):
    """How much statistical weight a selection outcome carries."""

    # A single survivor with the procedure's probability guarantee
    SELECTED = "selected"
    # GSP picked the apparent best, but stage 3 hit the replication limit
    RINOTT_VOID = "rinott_void"
    # KN hit the replication limit with several survivors
    REPLICATION_LIMIT = "replication_limit"
    CANCELED = "canceled"
    # Nothing to choose between
    TRIVIAL = "trivial"


class SelectionOutcome(WinnowBaseModel):
    """Result of a selection run."""

    procedure: str
    guarantee: Guarantee
    best: Optional[str] = None
    survivors: list[str] = Field(default_factory=list)
    eliminated: list[str] = Field(default_factory=list)
    waves: int = 0
    replications_submitted: int = 0

    @property
    def guaranteed(self) -> bool:
        """True only when the selection carries the formal guarantee."""
        return self.guarantee is Guarantee.SELECTED
