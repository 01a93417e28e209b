"""
Calculation Models.

============================================================
PURPOSE
============================================================
Pluggable formulas that turn a fact quantity into a derived
value. The recalculation engine treats a model as a black box:
apply(quantity, parameters) -> value.

============================================================
MINING OUTPUT MODEL
============================================================
quantity is curtailed energy (MWh) for one 30-minute period.
The energy runs as many miners of the variant's hardware
profile as it can fully power for the period; the value is
the expected coins those miners would mine:

    miners = floor(quantity * 1000 / (power_kw * 0.5))
    hashes = miners * hashrate_ths * 1e12 * 1800
    value  = hashes / (difficulty * 2^32) * block_reward

============================================================
"""

from abc import ABC, abstractmethod
from decimal import ROUND_FLOOR, ROUND_HALF_UP, Decimal, InvalidOperation, localcontext

from core.exceptions import CalculationError
from core.reference_data import ModelParameters


PERIOD_HOURS = Decimal("0.5")
PERIOD_SECONDS = Decimal(1800)
HASHES_PER_TERAHASH = Decimal(10) ** 12
HASHES_PER_DIFFICULTY = Decimal(2) ** 32
VALUE_QUANTUM = Decimal("0.00000001")


class CalculationModel(ABC):
    """Formula applied to every fact for one model variant."""

    name: str = "abstract"

    @abstractmethod
    def apply(self, quantity: Decimal, parameters: ModelParameters) -> Decimal:
        """
        Compute the derived value for a fact quantity.

        Args:
            quantity: Non-negative magnitude of the fact quantity
            parameters: Variant parameterization

        Raises:
            CalculationError: If no value can be produced
        """


class MiningOutputModel(CalculationModel):
    """Expected coins mined with the curtailed energy of one period."""

    name = "mining_output"

    def miner_count(self, quantity: Decimal, parameters: ModelParameters) -> Decimal:
        energy_per_miner_kwh = parameters.power_kw * PERIOD_HOURS
        if energy_per_miner_kwh <= 0:
            raise CalculationError(
                f"Non-positive power rating for {parameters.variant}",
                model_variant=parameters.variant,
            )
        return (quantity * 1000 / energy_per_miner_kwh).to_integral_value(rounding=ROUND_FLOOR)

    def apply(self, quantity: Decimal, parameters: ModelParameters) -> Decimal:
        if not quantity.is_finite() or quantity < 0:
            raise CalculationError(
                f"Quantity must be a finite magnitude, got {quantity}",
                model_variant=parameters.variant,
            )
        if parameters.difficulty <= 0:
            raise CalculationError(
                "Difficulty must be positive",
                model_variant=parameters.variant,
            )

        try:
            with localcontext() as ctx:
                ctx.prec = 50
                miners = self.miner_count(quantity, parameters)
                hashes = miners * parameters.hashrate_ths * HASHES_PER_TERAHASH * PERIOD_SECONDS
                value = hashes / (parameters.difficulty * HASHES_PER_DIFFICULTY) * parameters.block_reward
                return value.quantize(VALUE_QUANTUM, rounding=ROUND_HALF_UP)
        except InvalidOperation as e:
            raise CalculationError(
                f"Arithmetic failure for quantity {quantity}: {e}",
                model_variant=parameters.variant,
                cause=e,
            ) from e


__all__ = ["CalculationModel", "MiningOutputModel"]
