# Copyright (c) Syntropy Systems
"""Shared Pydantic model helpers for winnow."""

from __future__ import annotations

from typing import ClassVar

from pydantic import BaseModel, ConfigDict


class WinnowBaseModel(BaseModel):
    """Base model with shared config for winnow schemas."""

    model_config: ClassVar[ConfigDict] = ConfigDict(
        extra="ignore",
        populate_by_name=True,
    )


class FrozenModel(BaseModel):
    """Immutable model for values that must not change during a run."""

    model_config: ClassVar[ConfigDict] = ConfigDict(
        extra="forbid",
        frozen=True,
        populate_by_name=True,
    )
