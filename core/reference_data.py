"""
Core Module - Reference Data.

============================================================
PURPOSE
============================================================
Immutable lookup data built once at startup and passed to
every component that needs it:

- the registered model variants and their hardware profiles
- network constants shared by all variants
- the per-date difficulty history, when one is available

Nothing here is module-level mutable state; tests construct
their own ReferenceData with fixture variants.

============================================================
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from types import MappingProxyType
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple

from .config import NetworkConfig
from .exceptions import ConfigurationError


logger = logging.getLogger("core.reference_data")


# ============================================================
# MODEL PARAMETERS
# ============================================================

@dataclass(frozen=True)
class ModelParameters:
    """Parameterization of one model variant (a hardware profile)."""

    variant: str
    hashrate_ths: Decimal
    power_watts: Decimal
    difficulty: Decimal
    block_reward: Decimal

    @property
    def power_kw(self) -> Decimal:
        return self.power_watts / Decimal(1000)

    def snapshot(self) -> Dict[str, Any]:
        """JSON-safe copy stored alongside each derived row."""
        return {
            "variant": self.variant,
            "hashrate_ths": str(self.hashrate_ths),
            "power_watts": str(self.power_watts),
            "difficulty": str(self.difficulty),
            "block_reward": str(self.block_reward),
        }


@dataclass(frozen=True)
class HardwareProfile:
    """Static hardware characteristics of a miner model."""

    hashrate_ths: Decimal
    power_watts: Decimal


DEFAULT_HARDWARE_PROFILES: Mapping[str, HardwareProfile] = MappingProxyType({
    "S19J_PRO": HardwareProfile(hashrate_ths=Decimal("100"), power_watts=Decimal("3050")),
    "S9": HardwareProfile(hashrate_ths=Decimal("13.5"), power_watts=Decimal("1350")),
    "M20S": HardwareProfile(hashrate_ths=Decimal("68"), power_watts=Decimal("3360")),
})


# ============================================================
# DIFFICULTY SOURCES
# ============================================================

class DifficultySource(ABC):
    """Historical network difficulty, looked up per settlement date."""

    @abstractmethod
    def difficulty_for(self, settlement_date: date) -> Optional[Decimal]:
        """Difficulty recorded for the date, or None when there is none."""


class FixedDifficulty(DifficultySource):
    """In-memory difficulty history keyed by date."""

    def __init__(self, values: Mapping[date, Decimal]):
        self._values = dict(values)

    def difficulty_for(self, settlement_date: date) -> Optional[Decimal]:
        return self._values.get(settlement_date)


# ============================================================
# REFERENCE DATA
# ============================================================

@dataclass(frozen=True)
class ReferenceData:
    """
    Registered model variants plus network constants.

    Variant order is preserved and used for every report and
    every per-date recalculation loop. Difficulty comes from the
    difficulty source when it has a value for the date, otherwise
    from the configured network default.
    """

    profiles: Tuple[Tuple[str, HardwareProfile], ...]
    network: NetworkConfig = field(default_factory=NetworkConfig)
    difficulty_source: Optional[DifficultySource] = field(default=None, compare=False)

    @classmethod
    def build(
        cls,
        profiles: Optional[Mapping[str, HardwareProfile]] = None,
        network: Optional[NetworkConfig] = None,
        difficulty_source: Optional[DifficultySource] = None,
    ) -> "ReferenceData":
        source = DEFAULT_HARDWARE_PROFILES if profiles is None else profiles
        if not source:
            raise ConfigurationError("At least one model variant must be registered")
        return cls(
            profiles=tuple(source.items()),
            network=network or NetworkConfig(),
            difficulty_source=difficulty_source,
        )

    @property
    def model_variants(self) -> Tuple[str, ...]:
        return tuple(name for name, _ in self.profiles)

    @property
    def variant_count(self) -> int:
        return len(self.profiles)

    def is_registered(self, variant: str) -> bool:
        return variant in self.model_variants

    def require_variant(self, variant: str) -> None:
        """
        Raises:
            ConfigurationError: If variant is not registered
        """
        if not self.is_registered(variant):
            raise ConfigurationError(
                f"Unknown model variant: {variant}",
                config_key="model_variant",
                actual_value=variant,
                context={"registered": ",".join(self.model_variants)},
            )

    def difficulty_for(self, settlement_date: Optional[date] = None) -> Decimal:
        if settlement_date is None or self.difficulty_source is None:
            return self.network.difficulty
        difficulty = self.difficulty_source.difficulty_for(settlement_date)
        if difficulty is None:
            logger.warning(
                f"No difficulty recorded for {settlement_date}, "
                f"using default {self.network.difficulty}"
            )
            return self.network.difficulty
        return difficulty

    def parameters_for(self, variant: str, settlement_date: Optional[date] = None) -> ModelParameters:
        """Parameters of a variant, with the difficulty in effect on settlement_date."""
        self.require_variant(variant)
        profile = dict(self.profiles)[variant]
        return ModelParameters(
            variant=variant,
            hashrate_ths=profile.hashrate_ths,
            power_watts=profile.power_watts,
            difficulty=self.difficulty_for(settlement_date),
            block_reward=self.network.block_reward,
        )

    def all_parameters(self, settlement_date: Optional[date] = None) -> Iterable[ModelParameters]:
        for variant in self.model_variants:
            yield self.parameters_for(variant, settlement_date)


__all__ = [
    "ModelParameters",
    "HardwareProfile",
    "DEFAULT_HARDWARE_PROFILES",
    "DifficultySource",
    "FixedDifficulty",
    "ReferenceData",
]
