"""Profile metadata."""

from __future__ import annotations

from dataclasses import asdict, dataclass, fields
from typing import Any, Dict


@dataclass
class Metadata:
    android_api_level: int = 0
    architecture: str = ""
    device_classification: str = ""
    device_locale: str = ""
    device_manufacturer: str = ""
    device_model: str = ""
    device_os_build_number: str = ""
    device_os_name: str = ""
    device_os_version: str = ""
    id: str = ""
    project_id: str = ""
    sdk_name: str = ""
    sdk_version: str = ""
    timestamp: int = 0
    trace_duration_ms: float = 0.0
    transaction_id: str = ""
    transaction_name: str = ""
    version_code: str = ""
    version_name: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Metadata":
        """Build from a mapping; missing keys keep their defaults, unknown keys are ignored."""
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)