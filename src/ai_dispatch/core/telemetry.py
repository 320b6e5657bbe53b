"""Token cost accounting and usage records.

Costs are looked up per (provider, model) from the bundled
``supported-models.json`` table, expressed per million tokens.
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

logger = logging.getLogger(__name__)

DEFAULT_CURRENCY = "USD"


def _default_models_path() -> Path:
    return Path(__file__).parent.parent / "resources" / "supported-models.json"


def calculate_cost(
    input_tokens: Optional[int],
    output_tokens: Optional[int],
    input_cost: float,
    output_cost: float,
) -> float:
    """Cost of a call given per-million-token prices, rounded to 6 decimals.

    Example:
        >>> calculate_cost(1_000_000, 1_000_000, 3, 15)
        18.0
    """
    cost = ((input_tokens or 0) / 1_000_000) * input_cost + (
        (output_tokens or 0) / 1_000_000
    ) * output_cost
    return round(cost, 6)


@dataclass(frozen=True)
class ModelCost:
    """Per-million-token prices for one model."""

    input_cost: float = 0.0
    output_cost: float = 0.0
    currency: str = DEFAULT_CURRENCY


ZERO_COST = ModelCost()


class CostTable:
    """Read-only (provider, model) → :class:`ModelCost` lookup.

    Args:
        models: Provider name -> list of model entries, each with an ``id`` and
            an optional ``cost_per_1m_tokens`` mapping (``input``, ``output``,
            ``currency``)
    """

    def __init__(self, models: Mapping[str, List[Dict[str, Any]]]):
        self._models = {str(k).lower(): list(v) for k, v in models.items()}

    @classmethod
    def from_json(cls, path: Path) -> "CostTable":
        with open(path, "r", encoding="utf-8") as f:
            return cls(json.load(f))

    @classmethod
    def load_default(cls) -> "CostTable":
        """Load the table bundled with the package."""
        return cls.from_json(_default_models_path())

    @property
    def providers(self) -> List[str]:
        return sorted(self._models)

    def models_for(self, provider_name: str) -> List[Dict[str, Any]]:
        return list(self._models.get(provider_name.lower(), []))

    def get_cost(self, provider_name: str, model_id: str) -> ModelCost:
        """Return the prices for a model, or zero cost if unlisted."""
        models = self._models.get(provider_name.lower()) if provider_name else None
        if models is None:
            logger.warning(
                f'Provider "{provider_name}" not found in cost table. '
                f"Cannot determine cost for model {model_id}."
            )
            return ZERO_COST

        model = next((m for m in models if m.get("id") == model_id), None)
        costs = (model or {}).get("cost_per_1m_tokens")
        if not costs:
            logger.warning(
                f'Cost data not found for model "{model_id}" under provider '
                f'"{provider_name}". Assuming zero cost.'
            )
            return ZERO_COST

        return ModelCost(
            input_cost=float(costs.get("input") or 0),
            output_cost=float(costs.get("output") or 0),
            currency=str(costs.get("currency") or DEFAULT_CURRENCY),
        )


_default_cost_table: Optional[CostTable] = None


def get_cost_table() -> CostTable:
    """Get the bundled cost table (loaded on first call)."""
    global _default_cost_table
    if _default_cost_table is None:
        _default_cost_table = CostTable.load_default()
    return _default_cost_table


@dataclass(frozen=True)
class TelemetryRecord:
    """Usage record for one successful provider call."""

    timestamp: str
    user_id: Optional[str]
    command_name: Optional[str]
    model_used: str
    provider_name: str
    input_tokens: int
    output_tokens: int
    total_tokens: int
    total_cost: float
    currency: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


async def record_usage(
    user_id: Optional[str],
    command_name: Optional[str],
    provider_name: str,
    model_id: str,
    input_tokens: Optional[int],
    output_tokens: Optional[int],
    output_type: str = "cli",
    *,
    cost_table: Optional[CostTable] = None,
    debug: bool = False,
) -> Optional[TelemetryRecord]:
    """Build the usage record for a call.

    Never raises: any failure is logged and None is returned.
    """
    try:
        table = cost_table or get_cost_table()
        cost = table.get_cost(provider_name, model_id)
        record = TelemetryRecord(
            timestamp=datetime.now(timezone.utc).isoformat(),
            user_id=user_id,
            command_name=command_name,
            model_used=model_id,
            provider_name=provider_name,
            input_tokens=input_tokens or 0,
            output_tokens=output_tokens or 0,
            total_tokens=(input_tokens or 0) + (output_tokens or 0),
            total_cost=calculate_cost(
                input_tokens, output_tokens, cost.input_cost, cost.output_cost
            ),
            currency=cost.currency,
        )
        if debug:
            logger.info(f"AI usage telemetry ({output_type}): {record.to_dict()}")
        return record
    except Exception as e:  # noqa: BLE001
        logger.error(f"Failed to log AI usage telemetry: {e}", exc_info=True)
        return None
