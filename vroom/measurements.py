"""Measurements recorded alongside a profile."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List


@dataclass
class MeasurementValue:
    elapsed_since_start_ns: int = 0
    value: float = 0.0


@dataclass
class Measurement:
    unit: str = ""
    values: List[MeasurementValue] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Measurement":
        return cls(
            unit=data.get("unit", ""),
            values=[
                MeasurementValue(
                    elapsed_since_start_ns=int(v.get("elapsed_since_start_ns", 0)),
                    value=float(v.get("value", 0.0)),
                )
                for v in data.get("values") or []
            ],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "unit": self.unit,
            "values": [
                {"elapsed_since_start_ns": v.elapsed_since_start_ns, "value": v.value}
                for v in self.values
            ],
        }


@dataclass
class MeasurementValueV2:
    timestamp: float = 0.0
    """UNIX timestamp in seconds."""
    value: float = 0.0


@dataclass
class MeasurementV2:
    unit: str = ""
    values: List[MeasurementValueV2] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MeasurementV2":
        return cls(
            unit=data.get("unit", ""),
            values=[
                MeasurementValueV2(
                    timestamp=float(v.get("timestamp", 0.0)),
                    value=float(v.get("value", 0.0)),
                )
                for v in data.get("values") or []
            ],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "unit": self.unit,
            "values": [{"timestamp": v.timestamp, "value": v.value} for v in self.values],
        }