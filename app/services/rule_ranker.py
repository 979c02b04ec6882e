"""
规则排序：对已匹配的规则给出全序，保证胜出规则唯一。

排序键（降序）：
1. 作用域：专属 > 全局
2. priority
3. 金额区间宽度：区间越窄越靠前，不限 / 单边开放排在最后
4. 规则 ID 升序（ID 唯一，保证确定性）
"""

import math
from decimal import Decimal
from typing import Any, Callable, Iterable, Optional, TypeVar

from app.models.schemas import MatchCriteria

T = TypeVar("T")


def _width(min_value, max_value) -> float:
    # 金额非负，下限缺省等价于 0；上限缺省则区间无界
    if not max_value:
        return math.inf
    return float(Decimal(str(max_value)) - Decimal(str(min_value or 0)))


def _id_key(rule_id: Any) -> tuple:
    # 混合 int / str 的 ID 也能稳定比较
    if isinstance(rule_id, (int, float)):
        return (0, rule_id, "")
    return (1, 0, str(rule_id))


def rank_key(criteria: MatchCriteria, owner: Optional[str], rule_id: Any) -> tuple:
    """越小越靠前的排序键。"""
    return (
        0 if owner else 1,
        -criteria.priority,
        _width(criteria.min_amount, criteria.max_amount),
        _width(criteria.min_usd_amount, criteria.max_usd_amount),
        _id_key(rule_id),
    )


def rank(
    rules: Iterable[T],
    criteria_of: Callable[[T], MatchCriteria] = lambda r: r.criteria,
    owner_of: Callable[[T], Optional[str]] = lambda r: getattr(r, "owner", ""),
    id_of: Callable[[T], Any] = lambda r: r.id,
) -> list[T]:
    return sorted(
        rules,
        key=lambda r: rank_key(criteria_of(r), owner_of(r), id_of(r)),
    )
