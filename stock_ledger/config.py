"""
Stock ledger configuration.

``LedgerConfig`` holds the business rules the engine applies at posting and
reconciliation time.  Field defaults suit a single-store deployment;
override them per deployment from a YAML file:

    # stock_ledger.yaml
    stock_ledger:
      allow_negative_stock: false
      investigation_percentage: "5"
      investigation_quantity: "10"

    config = load_config(Path("stock_ledger.yaml"))
"""

from dataclasses import dataclass, fields
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Self

import yaml

from stock_ledger.logging_config import get_logger

logger = get_logger("config")

CONFIG_SECTION = "stock_ledger"

_DECIMAL_FIELDS = {
    "variance_tolerance",
    "investigation_percentage",
    "investigation_quantity",
    "investigation_value",
}


@dataclass(frozen=True)
class LedgerConfig:
    """
    Configuration schema for the stock ledger.

    Posting:
        allow_negative_stock: permit backorder/oversell (balance below zero).
        quantity_places: decimal places quantities are rounded to.
        max_lock_retries: optimistic retries in BalanceProjector.apply_delta.

    Reconciliation:
        variance_tolerance: |variance| below this counts as a match.
        investigation_*: thresholds above which a variance needs a human.
        suspicious_*: movement burst that flags a pair as suspicious.
        investigation_days_back / gap_days / max_corrections: investigate().
    """

    # Posting
    allow_negative_stock: bool = False
    quantity_places: int = 4
    max_lock_retries: int = 3

    # Variance classification
    variance_tolerance: Decimal = Decimal("0.0001")
    investigation_percentage: Decimal = Decimal("5")
    investigation_quantity: Decimal = Decimal("10")
    investigation_value: Decimal = Decimal("1000")

    # Suspicious activity
    suspicious_movement_count: int = 100
    suspicious_window_days: int = 30

    # Investigation
    investigation_days_back: int = 90
    gap_days: int = 30
    max_corrections: int = 5

    def __post_init__(self):
        if not 0 <= self.quantity_places <= 9:
            raise ValueError(
                f"quantity_places must be between 0 and 9, got {self.quantity_places}"
            )
        if self.max_lock_retries < 1:
            raise ValueError("max_lock_retries must be at least 1")
        if self.variance_tolerance < 0:
            raise ValueError("variance_tolerance cannot be negative")
        for name in ("investigation_percentage", "investigation_quantity", "investigation_value"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} cannot be negative")
        for name in (
            "suspicious_movement_count",
            "suspicious_window_days",
            "investigation_days_back",
            "gap_days",
            "max_corrections",
        ):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} cannot be negative")

    @classmethod
    def with_defaults(cls) -> Self:
        """Create config with the default business rules."""
        return cls()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Self:
        """
        Build a config from a plain mapping (e.g. parsed YAML).

        Decimal fields accept strings, ints or YAML floats (converted via
        their string form).  Unknown keys are rejected so
        a misspelt setting cannot silently fall back to its default.

        Raises:
            ValueError: On unknown keys or invalid values.
        """
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ValueError(f"Unknown stock ledger settings: {', '.join(unknown)}")

        values: dict[str, Any] = {}
        for key, val in data.items():
            if key in _DECIMAL_FIELDS:
                try:
                    val = Decimal(str(val))
                except InvalidOperation as exc:
                    raise ValueError(f"{key} must be a number, got {val!r}") from exc
            values[key] = val
        return cls(**values)


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the document is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected a mapping at the top level")
    return data


def load_config(path: Path | str) -> LedgerConfig:
    """
    Load a LedgerConfig from YAML.

    Settings are read from a ``stock_ledger:`` section when present,
    otherwise from the top level of the document.
    """
    data = load_yaml_file(Path(path))
    section = data.get(CONFIG_SECTION, data)
    if not isinstance(section, dict):
        raise ValueError(f"{path}: '{CONFIG_SECTION}' must be a mapping")
    config = LedgerConfig.from_dict(section)
    logger.debug(
        "ledger_config_loaded",
        extra={
            "path": str(path),
            "allow_negative_stock": config.allow_negative_stock,
            "quantity_places": config.quantity_places,
            "max_lock_retries": config.max_lock_retries,
        },
    )
    return config
