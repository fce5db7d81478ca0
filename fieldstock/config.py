"""Engine settings, read from the environment.

A .env file at the project root is loaded once on import and never
overrides variables that are already set.

    FIELDSTOCK_AWS_REGION=us-west-2
    FIELDSTOCK_TABLE_PREFIX=Fieldstock
    FIELDSTOCK_VEHICLE_DEFAULT_MIN=2
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

_env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(_env_path, override=False)


@dataclass(frozen=True)
class EngineSettings:
    aws_region: str = "us-west-2"
    table_prefix: str = "Fieldstock"

    # Status threshold when an item has no ledger entries at all
    default_status_minimum: int = 5

    # Floor/ceiling for vehicle entries created by a transfer
    vehicle_default_minimum: int = 2
    vehicle_default_maximum: int = 10

    unknown_supplier: str = "Unknown Supplier"
    unknown_vendor_id: str = "unknown-vendor"

    lock_timeout_seconds: float = 10.0

    def table_name(self, name: str) -> str:
        return f"{self.table_prefix}{name}"


def _int_env(name: str, default: int) -> int:
    value = os.environ.get(name)
    return int(value) if value not in (None, "") else default


def _float_env(name: str, default: float) -> float:
    value = os.environ.get(name)
    return float(value) if value not in (None, "") else default


def get_settings() -> EngineSettings:
    """Builds settings from the current environment on every call."""
    defaults = EngineSettings()
    return EngineSettings(
        aws_region=os.environ.get(
            "FIELDSTOCK_AWS_REGION", os.environ.get("AWS_DEFAULT_REGION", defaults.aws_region)
        ),
        table_prefix=os.environ.get("FIELDSTOCK_TABLE_PREFIX", defaults.table_prefix),
        default_status_minimum=_int_env(
            "FIELDSTOCK_DEFAULT_STATUS_MIN", defaults.default_status_minimum
        ),
        vehicle_default_minimum=_int_env(
            "FIELDSTOCK_VEHICLE_DEFAULT_MIN", defaults.vehicle_default_minimum
        ),
        vehicle_default_maximum=_int_env(
            "FIELDSTOCK_VEHICLE_DEFAULT_MAX", defaults.vehicle_default_maximum
        ),
        unknown_supplier=os.environ.get("FIELDSTOCK_UNKNOWN_SUPPLIER", defaults.unknown_supplier),
        unknown_vendor_id=os.environ.get("FIELDSTOCK_UNKNOWN_VENDOR_ID", defaults.unknown_vendor_id),
        lock_timeout_seconds=_float_env("FIELDSTOCK_LOCK_TIMEOUT", defaults.lock_timeout_seconds),
    )
