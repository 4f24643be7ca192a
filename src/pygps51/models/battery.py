"""Battery chemistry configuration for voltage mapping."""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, ConfigDict, model_validator


class BatteryChemistry(StrEnum):
    LEAD_ACID = "lead_acid"
    AGM = "agm"
    LITHIUM = "lithium"


class BatteryConfig(BaseModel):
    """Voltage window of a vehicle's battery.

    ``min_voltage`` maps to 0 %, ``max_voltage`` to 100 %.
    """

    model_config = ConfigDict(frozen=True)

    nominal_voltage: int
    chemistry: BatteryChemistry
    min_voltage: float
    max_voltage: float

    @model_validator(mode="after")
    def _check_window(self) -> BatteryConfig:
        if self.max_voltage <= self.min_voltage:
            raise ValueError("max_voltage must be greater than min_voltage")
        return self


DEFAULT_12V_LEAD_ACID = BatteryConfig(
    nominal_voltage=12,
    chemistry=BatteryChemistry.LEAD_ACID,
    min_voltage=11.0,
    max_voltage=12.8,
)
DEFAULT_24V_LEAD_ACID = BatteryConfig(
    nominal_voltage=24,
    chemistry=BatteryChemistry.LEAD_ACID,
    min_voltage=22.0,
    max_voltage=25.6,
)
DEFAULT_48V_LITHIUM = BatteryConfig(
    nominal_voltage=48,
    chemistry=BatteryChemistry.LITHIUM,
    min_voltage=40.0,
    max_voltage=54.4,
)

DEFAULT_BATTERY_CONFIGS: dict[int, BatteryConfig] = {
    12: DEFAULT_12V_LEAD_ACID,
    24: DEFAULT_24V_LEAD_ACID,
    48: DEFAULT_48V_LITHIUM,
}
