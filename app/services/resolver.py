"""
作用域规则解析：从一组规则中选出唯一胜出的规则。

同一套算法服务于路由、佣金、派单路由、结算绑定四张配置表，
仅通过取值函数区分匹配条件、归属、ID 和载荷。
"""

import logging
from typing import Any, Callable, Generic, Iterable, Optional, TypeVar

from app.models.schemas import (
    CommissionConfig,
    ContractSettleConfig,
    DispatchRouter,
    MatchCriteria,
    Resolution,
    RoutingRule,
    StrategyRule,
    TransactionContext,
)
from app.services import rule_matcher, rule_ranker
from app.services.errors import NoMatchingRule

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ScopedResolver(Generic[T]):
    """匹配 + 排序，返回胜出规则。"""

    def __init__(
        self,
        name: str,
        payload_of: Callable[[T], Any] = lambda r: r,
        criteria_of: Callable[[T], MatchCriteria] = lambda r: r.criteria,
        owner_of: Callable[[T], Optional[str]] = lambda r: getattr(r, "owner", ""),
        id_of: Callable[[T], Any] = lambda r: r.id,
    ):
        self.name = name
        self.payload_of = payload_of
        self.criteria_of = criteria_of
        self.owner_of = owner_of
        self.id_of = id_of

    def candidates(self, rules: Iterable[T], context: TransactionContext) -> list[T]:
        """返回所有适用的规则（未排序）。参与比较的规则先做字段自洽校验。"""
        matched = []
        for rule in rules:
            criteria = self.criteria_of(rule)
            owner = self.owner_of(rule)
            if not rule_matcher.prefilter(criteria, owner, context):
                continue
            rule_matcher.validate_criteria(criteria, self.id_of(rule))
            if rule_matcher.matches(criteria, owner, context):
                matched.append(rule)
        return matched

    def rank(self, rules: Iterable[T]) -> list[T]:
        return rule_ranker.rank(rules, self.criteria_of, self.owner_of, self.id_of)

    def try_resolve(
        self, rules: Iterable[T], context: TransactionContext
    ) -> Optional[Resolution]:
        """解析胜出规则，无匹配时返回 None。"""
        ranked = self.rank(self.candidates(rules, context))
        if not ranked:
            logger.debug(
                "%s 无匹配规则: subject=%s, trx_type=%s",
                self.name, context.subject_id, context.trx_type,
            )
            return None
        winner = ranked[0]
        rule_id = self.id_of(winner)
        logger.debug(
            "%s 命中规则 %s (候选 %d 条): subject=%s",
            self.name, rule_id, len(ranked), context.subject_id,
        )
        return Resolution(rule_id=rule_id, payload=self.payload_of(winner), rule=winner)

    def resolve(self, rules: Iterable[T], context: TransactionContext) -> Resolution:
        """
        解析胜出规则。

        Raises:
            NoMatchingRule: 没有任何规则适用。
            InvalidRuleConfiguration: 参与比较的规则字段矛盾。
        """
        resolution = self.try_resolve(rules, context)
        if resolution is None:
            raise NoMatchingRule(
                f"{self.name} 无匹配规则 (subject={context.subject_id}, "
                f"trx_type={context.trx_type}, amount={context.amount})"
            )
        return resolution


routing_resolver: ScopedResolver[RoutingRule] = ScopedResolver(
    "routing", payload_of=lambda r: r.target
)
commission_resolver: ScopedResolver[CommissionConfig] = ScopedResolver("commission")
dispatch_router_resolver: ScopedResolver[DispatchRouter] = ScopedResolver(
    "dispatch_router", payload_of=lambda r: r.strategy_code
)
settlement_resolver: ScopedResolver[ContractSettleConfig] = ScopedResolver("settlement")
strategy_rule_resolver: ScopedResolver[StrategyRule] = ScopedResolver(
    "strategy_rule", owner_of=lambda r: "", id_of=lambda r: r.rule_id
)


def resolve_routing(rules: Iterable[RoutingRule], context: TransactionContext) -> Resolution:
    """路由解析：无匹配即交易无法继续。"""
    return routing_resolver.resolve(rules, context)


def resolve_commission(
    configs: Iterable[CommissionConfig], context: TransactionContext
) -> Resolution:
    return commission_resolver.resolve(configs, context)


def resolve_dispatch_router(
    routers: Iterable[DispatchRouter], context: TransactionContext
) -> Resolution:
    return dispatch_router_resolver.resolve(routers, context)


def resolve_settlement_binding(
    bindings: Iterable[ContractSettleConfig], context: TransactionContext
) -> Optional[Resolution]:
    """结算绑定解析为软失败：无匹配时返回 None，由合约默认行为兜底。"""
    return settlement_resolver.try_resolve(bindings, context)


def resolve_strategy_rule(
    rules: Iterable[StrategyRule], context: TransactionContext
) -> Optional[Resolution]:
    return strategy_rule_resolver.try_resolve(rules, context)
