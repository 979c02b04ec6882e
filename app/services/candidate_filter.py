"""
候选过滤：按派单规则逐个检查候选账户。

- 各门槛独立求值，只淘汰当前候选，不影响整批
- 记录第一个不满足的子句，便于排查
- prevent_same_upi 依赖已选中的候选，需按排序后的顺序折叠处理
"""

import logging
from typing import Iterable

from app.models.schemas import Candidate, CandidateResult, TransactionContext
from app.services.dispatch_rules import DispatchRules
from app.services.errors import InvalidTransactionContext

logger = logging.getLogger(__name__)

UPI_REASON = "prevent_same_upi"


def check_candidate(
    rules: DispatchRules, candidate: Candidate, context: TransactionContext
) -> CandidateResult:
    for gate in rules.gates:
        if not gate.passes(candidate, context):
            return CandidateResult(candidate.id, False, gate.name)
    return CandidateResult(candidate.id, True)


def filter_candidates(
    rules: DispatchRules,
    candidates: Iterable[Candidate],
    context: TransactionContext,
) -> list[CandidateResult]:
    """
    对候选池逐个应用独立门槛。

    Returns:
        与输入顺序一致的 CandidateResult 列表。

    Raises:
        InvalidTransactionContext: 候选 ID 重复，或配置了余额倍数但交易金额不大于 0。
    """
    candidates = list(candidates)
    seen: set[str] = set()
    for c in candidates:
        if c.id in seen:
            raise InvalidTransactionContext(f"候选池中存在重复的候选 ID: {c.id}")
        seen.add(c.id)

    results = [check_candidate(rules, c, context) for c in candidates]
    failed = sum(1 for r in results if not r.passed)
    if failed:
        logger.debug("候选过滤: 共 %d 个, 淘汰 %d 个", len(results), failed)
    return results


def exclude_same_upi(
    rules: DispatchRules,
    ranked: list[Candidate],
    results: list[CandidateResult],
) -> list[Candidate]:
    """
    按排序顺序折叠：UPI 已被前面的候选占用则淘汰，并回写到 results。
    每次调用先清除上一次折叠留下的标记，同一批 results 可按新的排序重新折叠。

    Returns:
        去重后的候选列表，保持原有顺序。
    """
    by_id = {r.candidate_id: r for r in results}
    for result in results:
        if result.reason == UPI_REASON:
            result.passed = True
            result.reason = None

    if not rules.prevent_same_upi:
        return list(ranked)

    chosen_upis: set[str] = set()
    kept = []
    for candidate in ranked:
        upi = candidate.upi_id
        if upi and upi in chosen_upis:
            result = by_id.get(candidate.id)
            if result is not None:
                result.passed = False
                result.reason = UPI_REASON
            continue
        if upi:
            chosen_upis.add(upi)
        kept.append(candidate)
    return kept
