"""
合约结算解析：校验合约是否受理交易，再选出结算周期、结算策略和费率规则。

- 合约或交易配置不受理：硬失败（NoMatchingRule）
- 无结算绑定或策略规则命中：软失败（返回 None，由合约默认结算兜底）
"""

import logging
from typing import Optional

from app.models.schemas import (
    STATUS_ACTIVE,
    Contract,
    ContractConfig,
    SettlementDecision,
    TransactionContext,
)
from app.services import rule_matcher
from app.services.commission import strategy_rule_fee
from app.services.errors import NoMatchingRule
from app.services.resolver import resolve_settlement_binding, resolve_strategy_rule

logger = logging.getLogger(__name__)

PAYIN_TRX_TYPES = {"payin", "cashier_payin", "deposit", "margin_deposit"}
PAYOUT_TRX_TYPES = {"payout", "cashier_payout", "withdraw", "cashier_withdraw"}


def contract_side(contract: Contract, trx_type: str) -> Optional[ContractConfig]:
    """按交易类型选择合约的收款或付款配置。"""
    if trx_type in PAYIN_TRX_TYPES:
        return contract.payin
    if trx_type in PAYOUT_TRX_TYPES:
        return contract.payout
    for side in (contract.payin, contract.payout):
        if side is not None and side.trx_type == trx_type:
            return side
    return None


def accepts(contract: Contract, context: TransactionContext) -> ContractConfig:
    """
    校验合约是否受理该交易。

    Returns:
        受理交易的合约配置（payin 或 payout）。

    Raises:
        NoMatchingRule: 合约未生效、已过期、已停用或无匹配的交易配置。
    """
    if contract.status != STATUS_ACTIVE:
        raise NoMatchingRule(f"合约 {contract.contract_id} 未启用")
    if contract.sid and contract.sid != context.subject_id:
        raise NoMatchingRule(f"合约 {contract.contract_id} 不属于 {context.subject_id}")
    if contract.start_at and context.timestamp < contract.start_at:
        raise NoMatchingRule(f"合约 {contract.contract_id} 尚未生效")
    if contract.expired_at and context.timestamp >= contract.expired_at:
        raise NoMatchingRule(f"合约 {contract.contract_id} 已过期")

    side = contract_side(contract, context.trx_type)
    if side is None or side.status != STATUS_ACTIVE:
        raise NoMatchingRule(
            f"合约 {contract.contract_id} 未开通 {context.trx_type}"
        )

    for trx_config in side.configs:
        rule_matcher.validate_criteria(trx_config.criteria)
        if rule_matcher.matches(trx_config.criteria, "", context):
            return side
    raise NoMatchingRule(
        f"合约 {contract.contract_id} 无受理该交易的配置 "
        f"(trx_method={context.trx_method}, ccy={context.ccy}, amount={context.amount})"
    )


def resolve_settlement(
    contract: Contract, context: TransactionContext
) -> Optional[SettlementDecision]:
    """
    解析结算决策。

    Returns:
        SettlementDecision；无结算绑定或策略规则命中时返回 None。

    Raises:
        NoMatchingRule: 合约不受理该交易。
        InvalidRuleConfiguration: 参与比较的配置字段矛盾。
    """
    side = accepts(contract, context)

    binding = resolve_settlement_binding(side.settle, context)
    if binding is None:
        logger.info(
            "合约 %s 无匹配结算配置，使用合约默认结算", contract.contract_id
        )
        return None

    settle_config = binding.rule
    details = {d.code: d for d in settle_config.strategy_list}
    for code in settle_config.strategies:
        detail = details.get(code)
        if detail is None or detail.status != STATUS_ACTIVE:
            continue
        rule = resolve_strategy_rule(detail.rules, context)
        if rule is None:
            continue
        fee = strategy_rule_fee(rule.rule, context)
        logger.info(
            "结算解析: contract=%s, type=%s, strategy=%s, rule=%s, fee=%s",
            contract.contract_id, settle_config.type, code, rule.rule_id, fee.amount,
        )
        return SettlementDecision(
            settle_type=settle_config.type,
            settle_config_id=settle_config.id,
            strategy_code=code,
            rule_id=rule.rule_id,
            fee=fee,
            settle_ccy=detail.settle_ccy,
        )

    logger.info(
        "合约 %s 结算配置 %s 下无可用策略规则", contract.contract_id, settle_config.id
    )
    return None
