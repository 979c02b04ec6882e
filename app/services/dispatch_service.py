"""
派单编排：派单路由 → 派单策略 → 候选过滤 → 候选排序。

流程：
1. 在派单路由中解析胜出路由，取其 strategy_code
2. 按编码查找启用的派单策略（策略自带匹配条件时须同时匹配）
3. 校验策略规则，按独立门槛过滤候选池
4. 按 sort_by 排序，再按排序顺序做 UPI 去重
5. 应用最小/最大候选人数，输出有序的候补列表；round_robin 此时才前进游标
任一阶段失败立即返回对应异常，不返回部分结果。每次派单写入审计日志（尽力而为）。
"""

import json
import logging
import os
import random
import sqlite3
from datetime import datetime
from typing import Iterable, Optional

from dotenv import load_dotenv

from app.database import get_db
from app.models.schemas import (
    STATUS_ACTIVE,
    Candidate,
    CandidateResult,
    DispatchResult,
    DispatchRouter,
    DispatchStrategy,
    TransactionContext,
)
from app.services import rule_matcher
from app.services.candidate_filter import exclude_same_upi, filter_candidates
from app.services.candidate_ranker import apply_limits, check_minimum, rank_candidates
from app.services.cursor_store import CursorStore, get_cursor_store
from app.services.dispatch_rules import SORT_ROUND_ROBIN, DispatchRules, load_rules
from app.services.errors import EngineError, NoMatchingRule
from app.services.resolver import resolve_dispatch_router

load_dotenv()

logger = logging.getLogger(__name__)


def audit_enabled() -> bool:
    return os.getenv("DISPATCH_AUDIT_ENABLED", "1") == "1"


def find_strategy(
    strategies: Iterable[DispatchStrategy],
    code: str,
    context: TransactionContext,
) -> DispatchStrategy:
    """
    按编码查找适用的派单策略。同编码多条时取 priority 最高、ID 最大的一条。

    Raises:
        NoMatchingRule: 策略不存在、未启用或自身匹配条件不满足。
    """
    usable = []
    for strategy in strategies:
        if strategy.code != code or strategy.status != STATUS_ACTIVE:
            continue
        if strategy.criteria is not None:
            rule_matcher.validate_criteria(strategy.criteria, strategy.id)
            if not rule_matcher.matches(strategy.criteria, "", context):
                continue
        usable.append(strategy)
    if not usable:
        raise NoMatchingRule(f"派单策略 {code} 不存在、未启用或不适用于当前交易")
    return max(usable, key=lambda s: (s.priority, s.id))


class Dispatcher:
    """派单编排器，持有一份路由 / 策略快照。"""

    def __init__(
        self,
        routers: Iterable[DispatchRouter],
        strategies: Iterable[DispatchStrategy],
        cursor_store: Optional[CursorStore] = None,
        audit: Optional[bool] = None,
    ):
        self.routers = list(routers)
        self.strategies = list(strategies)
        self.cursor_store = cursor_store or get_cursor_store()
        self.audit = audit_enabled() if audit is None else audit

    def dispatch(
        self,
        context: TransactionContext,
        pool: Iterable[Candidate],
        rng: Optional[random.Random] = None,
    ) -> DispatchResult:
        """
        为交易生成有序的候选列表。

        Raises:
            NoMatchingRule: 无匹配派单路由或策略。
            InsufficientCandidates: 过滤后候选人数不足。
            InvalidRuleConfiguration: 路由或策略配置矛盾。
            InvalidTransactionContext: 交易上下文不满足前置条件。
        """
        pool = list(pool)
        router_id = None
        strategy_code = None
        trace = []
        try:
            router = resolve_dispatch_router(self.routers, context)
            router_id = router.rule_id
            strategy_code = router.payload
            strategy = find_strategy(self.strategies, strategy_code, context)
            rules = load_rules(strategy.rules)

            trace = filter_candidates(rules, pool, context)
            survivors = [c for c, r in zip(pool, trace) if r.passed]
            check_minimum(rules, len(survivors))
            selected = self._select(rules, strategy.code, survivors, trace, rng)
        except EngineError as e:
            logger.info(
                "派单失败: subject=%s, trx_type=%s, amount=%s, strategy=%s, error=%s: %s",
                context.subject_id, context.trx_type, context.amount,
                strategy_code, e.code, e.msg,
            )
            self._log_dispatch(context, router_id, strategy_code, e.code, [], trace)
            raise

        result = DispatchResult(
            router_id=router_id,
            strategy_code=strategy_code,
            candidates=selected,
            trace=trace,
        )
        logger.info(
            "派单完成: subject=%s, router=%s, strategy=%s, 候选=%s",
            context.subject_id, router_id, strategy_code, ",".join(result.candidate_ids),
        )
        self._log_dispatch(context, router_id, strategy_code, "OK", result.candidate_ids, trace)
        return result

    def _select(
        self,
        rules: DispatchRules,
        strategy_code: str,
        survivors: list[Candidate],
        trace: list[CandidateResult],
        rng: Optional[random.Random],
    ) -> list[Candidate]:
        """
        排序、UPI 去重并应用人数限制。

        round_robin 先读取游标排序，选出候选后才以比较并交换前进游标，
        失败的派单不会移动游标。
        """
        if rules.ranking.sort_by != SORT_ROUND_ROBIN:
            ranked = rank_candidates(rules, survivors, rng=rng)
            return apply_limits(rules, exclude_same_upi(rules, ranked, trace))

        while True:
            cursor = self.cursor_store.get(strategy_code)
            ranked = rank_candidates(rules, survivors, cursor)
            selected = apply_limits(rules, exclude_same_upi(rules, ranked, trace))
            if self.cursor_store.advance(strategy_code, cursor):
                return selected
            # 其他派单已从该位置前进，重读游标
            logger.debug("轮询游标已变化，重试: key=%s, cursor=%d", strategy_code, cursor)

    def _log_dispatch(
        self,
        context: TransactionContext,
        router_id,
        strategy_code: Optional[str],
        result: str,
        candidate_ids: list[str],
        trace: list,
    ) -> None:
        """记录派单审计日志到 dispatch_logs 表，写入失败不影响派单结果。"""
        if not self.audit:
            return
        now = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        trace_json = json.dumps(
            [
                {"id": r.candidate_id, "passed": r.passed, "reason": r.reason}
                for r in trace
            ],
            ensure_ascii=False,
        )
        try:
            db = get_db()
            try:
                db.execute(
                    """INSERT INTO dispatch_logs
                       (strategy_code, router_id, subject_id, trx_type, amount,
                        result, candidate_ids, trace, created_at)
                       VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                    (
                        strategy_code, router_id, context.subject_id,
                        context.trx_type, str(context.amount), result,
                        ",".join(candidate_ids), trace_json, now,
                    ),
                )
                db.commit()
            finally:
                db.close()
        except sqlite3.Error as e:
            logger.warning("写入派单审计日志失败: %s", e)


def list_dispatch_logs(strategy_code: Optional[str] = None, limit: int = 50) -> list[dict]:
    """查询最近的派单审计日志，按时间倒序。"""
    db = get_db()
    try:
        if strategy_code:
            rows = db.execute(
                """SELECT * FROM dispatch_logs WHERE strategy_code = ?
                   ORDER BY id DESC LIMIT ?""",
                (strategy_code, limit),
            ).fetchall()
        else:
            rows = db.execute(
                "SELECT * FROM dispatch_logs ORDER BY id DESC LIMIT ?", (limit,)
            ).fetchall()
        result = []
        for row in rows:
            d = dict(row)
            d["candidate_ids"] = d["candidate_ids"].split(",") if d["candidate_ids"] else []
            d["trace"] = json.loads(d["trace"]) if d["trace"] else []
            result.append(d)
        return result
    finally:
        db.close()
