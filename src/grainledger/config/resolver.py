"""Configuration resolver — loads distribution settings from the config dir.

Config lives in config/grain_config.json:

    {
      "actor_id": "grain-admin",
      "max_simultaneous_distributions": 4,
      "allocation_policies": [
        {"policy_type": "IMMEDIATE", "budget": "1000", "num_intervals_lookback": 1},
        {"policy_type": "BALANCED", "budget": "4000", "num_intervals_lookback": 0}
      ]
    }

Budgets in config are whole Grain decimal strings ("1000" is one
thousand Grain), unlike serialized records which use base units.

Environment (a .env file is honoured via python-dotenv):
    GRAINLEDGER_CONFIG_DIR   directory holding grain_config.json
    GRAINLEDGER_DATA_DIR     directory holding ledger.jsonl
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, List, Optional

from dotenv import load_dotenv

from grainledger.allocation.engine import validate_policy
from grainledger.errors import InvalidPolicy
from grainledger.models.allocation import AllocationPolicy
from grainledger.models.grain import Grain
from grainledger.persistence.codec import policy_from_dict

CONFIG_FILENAME = "grain_config.json"
PROJECT_ROOT = Path(__file__).resolve().parents[3]
DEFAULT_CONFIG_DIR = PROJECT_ROOT / "config"
DEFAULT_DATA_DIR = PROJECT_ROOT / "data"


class ConfigResolver:
    """Typed access to the Grain configuration.

    Usage:
        resolver = ConfigResolver.from_config_dir(config_dir)
        policies = resolver.allocation_policies()
    """

    def __init__(self, config: dict[str, Any]) -> None:
        self._config = config
        self._policies = self._parse_policies(config.get("allocation_policies", []))
        self._max_simultaneous = config.get("max_simultaneous_distributions", 1)
        if (
            isinstance(self._max_simultaneous, bool)
            or not isinstance(self._max_simultaneous, int)
            or self._max_simultaneous < 1
        ):
            raise ValueError(
                "max_simultaneous_distributions must be an integer >= 1, "
                f"got {self._max_simultaneous!r}"
            )

    @classmethod
    def from_config_dir(cls, config_dir: Path) -> ConfigResolver:
        path = config_dir / CONFIG_FILENAME
        with path.open("r", encoding="utf-8") as handle:
            return cls(json.load(handle))

    @classmethod
    def from_environment(cls, env_file: Optional[Path] = None) -> ConfigResolver:
        """Load .env (if any), then read config from GRAINLEDGER_CONFIG_DIR."""
        load_dotenv(env_file)
        return cls.from_config_dir(config_dir_from_environment())

    def allocation_policies(self) -> List[AllocationPolicy]:
        return list(self._policies)

    def max_simultaneous_distributions(self) -> int:
        return self._max_simultaneous

    def actor_id(self) -> str:
        return str(self._config.get("actor_id", "ledger"))

    @staticmethod
    def _parse_policies(raw: Any) -> List[AllocationPolicy]:
        if not isinstance(raw, list):
            raise ValueError("allocation_policies must be a list")
        policies = []
        for index, data in enumerate(raw):
            try:
                policies.append(validate_policy(policy_from_dict(data, parse_budget=Grain.of)))
            except InvalidPolicy as exc:
                raise ValueError(f"allocation_policies[{index}]: {exc}") from exc
        return policies


def config_dir_from_environment() -> Path:
    value = os.getenv("GRAINLEDGER_CONFIG_DIR")
    return Path(value) if value else DEFAULT_CONFIG_DIR


def data_dir_from_environment() -> Path:
    value = os.getenv("GRAINLEDGER_DATA_DIR")
    return Path(value) if value else DEFAULT_DATA_DIR
