"""Quota policy loading and AI dispatch cost estimation."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from vitalroute.domains.health.orchestration.models import RequestKind

logger = logging.getLogger(__name__)

WINDOWS = ("hour", "day", "week", "month")

DEFAULT_POLICY_PATH = Path(__file__).resolve().parent / "policies" / "quota_policy.yaml"


class QuotaPolicyError(Exception):
    """Raised when a quota policy file is missing or malformed."""


@dataclass(frozen=True)
class WindowLimits:
    hour: int
    day: int
    week: int
    month: int

    def for_window(self, window: str) -> int:
        return getattr(self, window)


@dataclass(frozen=True)
class QuotaPolicy:
    """Per-kind window limits, per-kind costs, and the monthly budget."""

    monthly_budget_usd: float
    critical_only_threshold: float
    token_cost_usd: float
    limits: dict[str, WindowLimits] = field(default_factory=dict)
    base_costs: dict[str, float] = field(default_factory=dict)
    priority_modifiers: dict[str, float] = field(default_factory=dict)

    def limits_for(self, kind: RequestKind) -> WindowLimits:
        return self.limits.get(kind.value) or self.limits["default"]

    def with_budget(self, monthly_budget_usd: float) -> QuotaPolicy:
        return QuotaPolicy(
            monthly_budget_usd=monthly_budget_usd,
            critical_only_threshold=self.critical_only_threshold,
            token_cost_usd=self.token_cost_usd,
            limits=self.limits,
            base_costs=self.base_costs,
            priority_modifiers=self.priority_modifiers,
        )


def _parse_policy(data: dict[str, Any], source: str) -> QuotaPolicy:
    try:
        limits = {
            kind: WindowLimits(**{w: int(values[w]) for w in WINDOWS})
            for kind, values in data["limits"].items()
        }
        if "default" not in limits:
            raise QuotaPolicyError(f"Quota policy {source} has no 'default' limits")
        return QuotaPolicy(
            monthly_budget_usd=float(data["monthly_budget_usd"]),
            critical_only_threshold=float(data.get("critical_only_threshold", 0.9)),
            token_cost_usd=float(data.get("token_cost_usd", 0.0)),
            limits=limits,
            base_costs={k: float(v) for k, v in data.get("base_costs", {}).items()},
            priority_modifiers={k: float(v) for k, v in data.get("priority_modifiers", {}).items()},
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise QuotaPolicyError(f"Invalid quota policy {source}: {exc}") from exc


def load_quota_policy(path: str | Path | None = None) -> QuotaPolicy:
    """Load a quota policy from YAML; the packaged default when ``path`` is empty."""
    policy_path = Path(path).expanduser() if path else DEFAULT_POLICY_PATH
    try:
        with open(policy_path) as f:
            data = yaml.safe_load(f)
    except OSError as exc:
        raise QuotaPolicyError(f"Cannot read quota policy {policy_path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise QuotaPolicyError(f"Quota policy {policy_path} is not valid YAML: {exc}") from exc

    if not isinstance(data, dict):
        raise QuotaPolicyError(f"Quota policy {policy_path} must be a mapping")
    policy = _parse_policy(data, str(policy_path))
    logger.info(
        "Loaded quota policy from %s (%d kinds, budget $%.2f)",
        policy_path,
        len(policy.limits),
        policy.monthly_budget_usd,
    )
    return policy


class AICostCalculator:
    """Estimates the USD cost of one AI dispatch."""

    def __init__(self, policy: QuotaPolicy) -> None:
        self.policy = policy

    def base_cost(self, kind: RequestKind) -> float:
        costs = self.policy.base_costs
        return costs.get(kind.value, costs.get("default", 0.0))

    def priority_modifier(self, kind: RequestKind) -> float:
        return self.policy.priority_modifiers.get(kind.value, 1.0)

    def estimate(self, kind: RequestKind, tokens: int = 0) -> float:
        cost = self.base_cost(kind) * self.priority_modifier(kind)
        cost += tokens * self.policy.token_cost_usd
        return round(cost, 6)
