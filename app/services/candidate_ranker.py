"""
候选排序：按策略的 sort_by 对通过过滤的候选排序，并应用人数限制。

- score_desc: 按外部给定的 score 降序，同分按候选 ID 升序
- random: 每次调用独立播种的 Fisher–Yates 洗牌
- round_robin: 按 ID 排序后按游标轮转，游标由派单编排在成功后前进
- weighted_random: 按权重无放回抽样，sort_random_factor 混入均匀分布
"""

import logging
import math
import random
from typing import Optional

from app.models.schemas import Candidate
from app.services.dispatch_rules import (
    SORT_RANDOM,
    SORT_ROUND_ROBIN,
    SORT_SCORE_DESC,
    SORT_WEIGHTED_RANDOM,
    DispatchRules,
)
from app.services.errors import InsufficientCandidates

logger = logging.getLogger(__name__)


def _by_score(candidates: list[Candidate]) -> list[Candidate]:
    return sorted(candidates, key=lambda c: (-c.score, c.id))


def _shuffled(candidates: list[Candidate], rng: random.Random) -> list[Candidate]:
    ordered = sorted(candidates, key=lambda c: c.id)
    rng.shuffle(ordered)
    return ordered


def _rotated(candidates: list[Candidate], cursor: int) -> list[Candidate]:
    ordered = sorted(candidates, key=lambda c: c.id)
    offset = cursor % len(ordered)
    return ordered[offset:] + ordered[:offset]


def blended_weights(candidates: list[Candidate], factor: float) -> list[float]:
    """
    权重与均匀分布的线性插值：p_i = (1 - f) * w_i / Σw + f / n。
    权重全为 0 时退化为均匀分布。
    """
    n = len(candidates)
    weights = [max(float(c.weight), 0.0) for c in candidates]
    total = sum(weights)
    if total <= 0:
        return [1.0 / n] * n
    return [(1 - factor) * w / total + factor / n for w in weights]


def _weighted_sample(
    candidates: list[Candidate], factor: float, rng: random.Random
) -> list[Candidate]:
    ordered = sorted(candidates, key=lambda c: c.id)
    probs = blended_weights(ordered, factor)
    keyed = []
    for candidate, p in zip(ordered, probs):
        if p <= 0:
            # 零概率排在最后，彼此保持 ID 顺序
            keyed.append((-math.inf, candidate))
            continue
        u = rng.random() or 1e-12
        # Efraimidis–Spirakis: key = u^(1/p)，取对数避免下溢
        keyed.append((math.log(u) / p, candidate))
    keyed.sort(key=lambda item: item[0], reverse=True)
    return [candidate for _, candidate in keyed]


def rank_candidates(
    rules: DispatchRules,
    survivors: list[Candidate],
    cursor: int = 0,
    rng: Optional[random.Random] = None,
) -> list[Candidate]:
    """
    对通过过滤的候选排序（最优在前）。

    Args:
        rules: 已校验的派单规则。
        survivors: 通过独立门槛的候选。
        cursor: round_robin 的当前游标，由调用方读取并在派单成功后前进。
        rng: 可选的随机源（测试时注入），默认每次调用独立播种。

    Returns:
        排序后的候选列表。
    """
    if not survivors:
        return []

    sort_by = rules.ranking.sort_by
    if sort_by == SORT_SCORE_DESC:
        return _by_score(survivors)
    if sort_by == SORT_ROUND_ROBIN:
        logger.debug("轮询排序: cursor=%d, 候选数=%d", cursor, len(survivors))
        return _rotated(survivors, cursor)

    rng = rng or random.Random()
    if sort_by == SORT_RANDOM:
        return _shuffled(survivors, rng)
    if sort_by == SORT_WEIGHTED_RANDOM:
        return _weighted_sample(survivors, rules.ranking.sort_random_factor, rng)

    raise ValueError(f"不支持的排序方式: {sort_by}")


def apply_limits(rules: DispatchRules, ordered: list[Candidate]) -> list[Candidate]:
    """
    应用最小/最大候选人数。

    Raises:
        InsufficientCandidates: 候选人数少于 limit_min_candidates。
    """
    check_minimum(rules, len(ordered))
    limit_max = rules.ranking.limit_max_candidates
    if limit_max and len(ordered) > limit_max:
        return ordered[:limit_max]
    return ordered


def check_minimum(rules: DispatchRules, count: int) -> None:
    # 未配置最小值时至少需要 1 个候选，空结果不算派单决策
    limit_min = max(rules.ranking.limit_min_candidates, 1)
    if count < limit_min:
        raise InsufficientCandidates(
            f"可用候选 {count} 个，少于最小要求 {limit_min} 个"
        )
