"""
手续费计算：fee = 固定费用 + 金额 × 费率 / 100。

费率先按 [min_rate, max_rate] 截断，费用再按 [min_fee, max_fee] 截断，
各边界为空或 0 表示不限。配置了 USD 字段且提供 USD 金额时同时计算 USD 费用。
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from app.models.schemas import CommissionConfig, Fee, StrategyRule, TransactionContext

_CENT = Decimal("0.01")


def _dec(value) -> Optional[Decimal]:
    if value is None or value == "":
        return None
    return Decimal(str(value))


def _clamp(value: Decimal, low, high) -> Decimal:
    low = _dec(low)
    high = _dec(high)
    if low and value < low:
        value = low
    if high and value > high:
        value = high
    return value


def calculate_fee(
    amount: Decimal,
    fixed,
    rate,
    min_fee=None,
    max_fee=None,
    min_rate=None,
    max_rate=None,
) -> tuple[Decimal, Decimal]:
    """
    计算单一币种的手续费。

    Returns:
        (fee, effective_rate)，fee 保留两位小数（四舍五入）。
    """
    effective_rate = _clamp(_dec(rate) or Decimal("0"), min_rate, max_rate)
    fee = (_dec(fixed) or Decimal("0")) + amount * effective_rate / Decimal("100")
    fee = _clamp(fee, min_fee, max_fee)
    return fee.quantize(_CENT, rounding=ROUND_HALF_UP), effective_rate


def commission_fee(config: CommissionConfig, context: TransactionContext) -> Fee:
    fee, rate = calculate_fee(
        context.amount,
        config.fixed_commission,
        config.rate,
        config.min_fee,
        config.max_fee,
        config.min_rate,
        config.max_rate,
    )
    usd_fee = None
    if context.usd_amount is not None and (
        config.fixed_usd_commission is not None or config.usd_rate is not None
    ):
        usd_fee, _ = calculate_fee(
            context.usd_amount,
            config.fixed_usd_commission,
            config.usd_rate,
            config.min_usd_fee,
            config.max_usd_fee,
            config.min_usd_rate,
            config.max_usd_rate,
        )
    return Fee(amount=fee, rate=rate, usd_amount=usd_fee)


def strategy_rule_fee(rule: StrategyRule, context: TransactionContext) -> Fee:
    fee, rate = calculate_fee(
        context.amount,
        rule.fixed_fee,
        rule.rate,
        rule.min_fee,
        rule.max_fee,
        rule.min_rate,
        rule.max_rate,
    )
    usd_fee = None
    if context.usd_amount is not None and (
        rule.fixed_usd_fee is not None or rule.usd_rate is not None
    ):
        usd_fee, _ = calculate_fee(
            context.usd_amount,
            rule.fixed_usd_fee,
            rule.usd_rate,
            rule.min_usd_fee,
            rule.max_usd_fee,
            rule.min_usd_rate,
            rule.max_usd_rate,
        )
    return Fee(amount=fee, rate=rate, usd_amount=usd_fee)
