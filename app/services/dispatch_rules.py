"""
派单规则（DispatchStrategy.rules）的加载与校验。

管理后台保存的是稀疏的 JSON 对象，字段类型混杂（布尔、字符串、数组、数字）。
加载时一次性校验并转换为按子句类型区分的结构，过滤阶段不再猜测字段类型。
"""

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Optional, Union

from app.models.schemas import Candidate, TransactionContext
from app.services import rule_matcher
from app.services.errors import InvalidRuleConfiguration, InvalidTransactionContext

SORT_SCORE_DESC = "score_desc"
SORT_RANDOM = "random"
SORT_ROUND_ROBIN = "round_robin"
SORT_WEIGHTED_RANDOM = "weighted_random"
SORT_MODES = {SORT_SCORE_DESC, SORT_RANDOM, SORT_ROUND_ROBIN, SORT_WEIGHTED_RANDOM}

# 布尔门槛 → 候选字段
_ONLINE_GATES = {
    "user_online_required": "user_online",
    "account_online_required": "account_online",
}

# 状态集合门槛 → 候选字段
_STATUS_GATES = {
    "user_status_required": "user_status",
    "user_payin_status": "user_payin_status",
    "user_payout_status": "user_payout_status",
    "account_status_required": "account_status",
    "account_payin_status": "account_payin_status",
    "account_payout_status": "account_payout_status",
}

# 过滤子句的固定求值顺序
GATE_ORDER = [
    "user_online_required",
    "user_status_required",
    "user_payin_status",
    "user_payout_status",
    "account_online_required",
    "account_status_required",
    "account_payin_status",
    "account_payout_status",
    "min_balance_ratio",
    "enforce_trx_config",
]

_KNOWN_KEYS = set(GATE_ORDER) | {
    "prevent_same_upi",
    "sort_by",
    "sort_random_factor",
    "limit_min_candidates",
    "limit_max_candidates",
}


# ── 子句类型 ──────────────────────────────────────────────


@dataclass(frozen=True)
class OnlineGate:
    name: str
    attr: str

    def passes(self, candidate: Candidate, context: TransactionContext) -> bool:
        return bool(getattr(candidate, self.attr))


@dataclass(frozen=True)
class StatusSetGate:
    name: str
    attr: str
    allowed: frozenset

    def passes(self, candidate: Candidate, context: TransactionContext) -> bool:
        return getattr(candidate, self.attr) in self.allowed


@dataclass(frozen=True)
class BalanceRatioGate:
    ratio: Decimal
    name: str = "min_balance_ratio"

    def passes(self, candidate: Candidate, context: TransactionContext) -> bool:
        if context.amount is None or context.amount <= 0:
            raise InvalidTransactionContext("校验余额倍数时交易金额必须大于 0")
        return Decimal(str(candidate.available_balance)) / context.amount >= self.ratio


@dataclass(frozen=True)
class TrxConfigGate:
    name: str = "enforce_trx_config"

    def passes(self, candidate: Candidate, context: TransactionContext) -> bool:
        cfg = candidate.channel_config
        if cfg is None:
            return False
        for rule_value, ctx_value in (
            (cfg.trx_method, context.trx_method),
            (cfg.ccy, context.ccy),
        ):
            if not rule_matcher.is_wildcard(rule_value) and (
                ctx_value is None or rule_value.lower() != ctx_value.lower()
            ):
                return False
        return rule_matcher.amount_in_range(context.amount, cfg.min_amount, cfg.max_amount)


Gate = Union[OnlineGate, StatusSetGate, BalanceRatioGate, TrxConfigGate]


@dataclass(frozen=True)
class RankingControls:
    sort_by: str = SORT_SCORE_DESC
    sort_random_factor: float = 0.0
    limit_min_candidates: int = 0
    limit_max_candidates: int = 0  # 0 表示不限


@dataclass(frozen=True)
class DispatchRules:
    gates: tuple = ()
    prevent_same_upi: bool = False
    ranking: RankingControls = field(default_factory=RankingControls)
    extras: dict = field(default_factory=dict, compare=False, hash=False)

    @property
    def gate_names(self) -> list[str]:
        return [g.name for g in self.gates]


# ── 加载 ──────────────────────────────────────────────────


def _require_bool(key: str, value: Any) -> bool:
    if not isinstance(value, bool):
        raise InvalidRuleConfiguration(f"派单规则 {key} 必须为布尔值")
    return value


def _require_int(key: str, value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or int(value) != value:
        raise InvalidRuleConfiguration(f"派单规则 {key} 必须为整数")
    if value < 0:
        raise InvalidRuleConfiguration(f"派单规则 {key} 不能为负数")
    return int(value)


def _require_status_set(key: str, value: Any) -> frozenset:
    if not isinstance(value, (list, tuple, set, frozenset)) or not all(
        isinstance(v, str) for v in value
    ):
        raise InvalidRuleConfiguration(f"派单规则 {key} 必须为字符串数组")
    return frozenset(value)


def _build_gate(key: str, value: Any) -> Optional[Gate]:
    if key in _ONLINE_GATES:
        return OnlineGate(key, _ONLINE_GATES[key]) if _require_bool(key, value) else None
    if key in _STATUS_GATES:
        allowed = _require_status_set(key, value)
        # 空数组视为未配置
        return StatusSetGate(key, _STATUS_GATES[key], allowed) if allowed else None
    if key == "min_balance_ratio":
        if isinstance(value, bool):
            raise InvalidRuleConfiguration("派单规则 min_balance_ratio 必须为数字")
        try:
            ratio = Decimal(str(value))
        except InvalidOperation:
            raise InvalidRuleConfiguration("派单规则 min_balance_ratio 必须为数字")
        if ratio < 0:
            raise InvalidRuleConfiguration("派单规则 min_balance_ratio 不能为负数")
        return BalanceRatioGate(ratio) if ratio > 0 else None
    if key == "enforce_trx_config":
        return TrxConfigGate() if _require_bool(key, value) else None
    return None


def load_rules(raw: Union[dict, DispatchRules, None]) -> DispatchRules:
    """
    将稀疏的规则对象转换为 DispatchRules。

    Args:
        raw: 管理后台保存的 rules JSON（dict），已加载的 DispatchRules 或 None。

    Returns:
        校验通过的 DispatchRules。

    Raises:
        InvalidRuleConfiguration: 字段类型错误、取值越界或最小/最大候选数矛盾。
    """
    if isinstance(raw, DispatchRules):
        return raw
    raw = {k: v for k, v in (raw or {}).items() if v is not None}

    gates = []
    for key in GATE_ORDER:
        if key in raw:
            gate = _build_gate(key, raw[key])
            if gate is not None:
                gates.append(gate)

    prevent_same_upi = _require_bool("prevent_same_upi", raw["prevent_same_upi"]) \
        if "prevent_same_upi" in raw else False

    sort_by = raw.get("sort_by", SORT_SCORE_DESC)
    if sort_by not in SORT_MODES:
        raise InvalidRuleConfiguration(f"不支持的排序方式: {sort_by}")

    factor = raw.get("sort_random_factor", 0)
    if isinstance(factor, bool) or not isinstance(factor, (int, float)) or not 0 <= factor <= 1:
        raise InvalidRuleConfiguration("派单规则 sort_random_factor 必须在 0~1 之间")

    limit_min = _require_int("limit_min_candidates", raw.get("limit_min_candidates", 0))
    limit_max = _require_int("limit_max_candidates", raw.get("limit_max_candidates", 0))
    if limit_max and limit_min > limit_max:
        raise InvalidRuleConfiguration(
            f"最小候选人数 {limit_min} 大于最大候选人数 {limit_max}"
        )

    return DispatchRules(
        gates=tuple(gates),
        prevent_same_upi=prevent_same_upi,
        ranking=RankingControls(
            sort_by=sort_by,
            sort_random_factor=float(factor),
            limit_min_candidates=limit_min,
            limit_max_candidates=limit_max,
        ),
        extras={k: v for k, v in raw.items() if k not in _KNOWN_KEYS},
    )
