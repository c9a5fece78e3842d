# Copyright (c) Syntropy Systems
"""Experiment definitions loaded from YAML."""
from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Callable, Optional, cast

import yaml
from pydantic import Field, PrivateAttr, ValidationError, model_validator

from winnow.errors import ConfigurationError
from winnow.local import (
    CommandSource,
    ConstantSource,
    LocalExperiment,
    LocalScenario,
    NormalSource,
    ReplicationSource,
)
from winnow.models.base import WinnowBaseModel
from winnow.models.experiment import Objective, ResponseDef

if TYPE_CHECKING:
    from winnow.config import WinnowConfig


class NormalSpec(WinnowBaseModel):
    """Normally distributed replication values."""

    mean: float
    sd: float = Field(ge=0.0)


class ScenarioSpec(WinnowBaseModel):
    """One scenario and where its replication values come from."""

    name: str
    normal: Optional[NormalSpec] = None
    constant: Optional[float] = None
    command: Optional[list[str]] = None
    active: bool = True

    @model_validator(mode="after")
    def _one_source(self) -> ScenarioSpec:
        given = [s for s in (self.normal, self.constant, self.command) if s is not None]
        if len(given) != 1:
            msg = f"Scenario '{self.name}' must define exactly one of normal, constant or command"
            raise ValueError(msg)
        if self.command is not None and not self.command:
            msg = f"Scenario '{self.name}' has an empty command"
            raise ValueError(msg)
        return self

    def build_source(self, response: str, seed: int, workdir: Path | None) -> ReplicationSource:
        if self.normal is not None:
            return NormalSource(mean=self.normal.mean, sd=self.normal.sd, seed=seed)
        if self.constant is not None:
            return ConstantSource(value=self.constant)
        return CommandSource(
            command_argv=tuple(cast("list[str]", self.command)),
            response=response,
            seed=seed,
            workdir=workdir,
        )


class ResponseSpec(WinnowBaseModel):
    """The response scenarios are ranked by."""

    name: str = "response"
    objective: Objective = Objective.MAXIMIZE

    @model_validator(mode="before")
    @classmethod
    def _normalize(cls, data: object) -> object:
        if isinstance(data, dict) and isinstance(data.get("objective"), str):
            data = dict(cast("dict[str, object]", data))
            data["objective"] = cast("str", data["objective"]).strip().lower()
        return data


class ExperimentFile(WinnowBaseModel):
    """An experiment: scenarios, the response and procedure parameters."""

    name: str = "experiment"
    procedure: Optional[str] = None
    response: ResponseSpec = Field(default_factory=ResponseSpec)
    parameters: dict[str, float] = Field(default_factory=dict)
    workers: Optional[int] = Field(default=None, ge=1)
    seed: int = 0
    scenarios: list[ScenarioSpec] = Field(default_factory=list)

    _path: Optional[Path] = PrivateAttr(default=None)

    @model_validator(mode="after")
    def _unique_names(self) -> ExperimentFile:
        names = [s.name for s in self.scenarios]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            msg = f"Duplicate scenario names: {', '.join(duplicates)}"
            raise ValueError(msg)
        return self

    @classmethod
    def from_yaml(cls, path: Path) -> ExperimentFile:
        """Load an experiment definition from a YAML file."""
        try:
            with path.open() as f:
                data = cast("object", yaml.safe_load(f))
        except OSError as e:
            msg = f"Cannot read experiment file {path}: {e}"
            raise ConfigurationError(msg) from e
        except yaml.YAMLError as e:
            msg = f"Invalid YAML in {path}: {e}"
            raise ConfigurationError(msg) from e

        if not isinstance(data, dict):
            msg = f"Experiment file {path} must contain a mapping"
            raise ConfigurationError(msg)

        try:
            experiment = cls.model_validate(data)
        except ValidationError as e:
            msg = f"Invalid experiment file {path}: {e}"
            raise ConfigurationError(msg) from e
        experiment._path = path
        return experiment

    def build_experiment(
        self,
        config: WinnowConfig,
        workers: int | None = None,
        on_progress: Callable[[int], None] | None = None,
    ) -> LocalExperiment:
        """Create a local host running this experiment's scenarios."""
        if not self.scenarios:
            msg = "Experiment has no scenarios"
            raise ConfigurationError(msg)

        workdir = self._path.parent if self._path is not None else None
        scenarios = [
            LocalScenario(
                name=spec.name,
                source=spec.build_source(self.response.name, self.seed + 1000 * index, workdir),
                active=spec.active,
            )
            for index, spec in enumerate(self.scenarios)
        ]
        responses = [
            ResponseDef(name=self.response.name, objective=self.response.objective, primary=True)
        ]
        return LocalExperiment(
            scenarios,
            responses,
            workers=workers or self.workers or config.workers,
            name=self.name,
            on_progress=on_progress,
        )
