"""手续费计算单元测试。"""

from decimal import Decimal

from app.models.schemas import (
    CommissionConfig,
    MatchCriteria,
    StrategyRule,
    TransactionContext,
)
from app.services.commission import calculate_fee, commission_fee, strategy_rule_fee


def _ctx(amount="1000", usd_amount=None) -> TransactionContext:
    return TransactionContext(
        subject_id="M1",
        trx_type="payin",
        amount=Decimal(amount),
        timestamp=1_700_000_000_000,
        usd_amount=Decimal(usd_amount) if usd_amount is not None else None,
    )


class TestCalculateFee:
    """固定费用 + 费率，费率与费用分别截断。"""

    def test_fixed_plus_rate(self):
        fee, rate = calculate_fee(Decimal("1000"), Decimal("2"), Decimal("1.5"))
        assert fee == Decimal("17.00")
        assert rate == Decimal("1.5")

    def test_max_fee_caps(self):
        fee, _ = calculate_fee(Decimal("1000"), 0, Decimal("1.5"), max_fee=Decimal("10"))
        assert fee == Decimal("10.00")

    def test_min_fee_floors(self):
        fee, _ = calculate_fee(Decimal("10"), 0, Decimal("1"), min_fee=Decimal("5"))
        assert fee == Decimal("5.00")

    def test_rate_clamped_before_fee(self):
        fee, rate = calculate_fee(Decimal("1000"), Decimal("2"), Decimal("1"), min_rate=Decimal("2"))
        assert rate == Decimal("2")
        assert fee == Decimal("22.00")

    def test_zero_bounds_ignored(self):
        fee, _ = calculate_fee(Decimal("1000"), 0, Decimal("1"), min_fee=0, max_fee=0)
        assert fee == Decimal("10.00")

    def test_rounds_half_up_to_cents(self):
        fee, _ = calculate_fee(Decimal("12.5"), 0, Decimal("1"))
        assert fee == Decimal("0.13")

    def test_nothing_configured(self):
        fee, rate = calculate_fee(Decimal("1000"), None, None)
        assert fee == Decimal("0.00")
        assert rate == Decimal("0")


class TestCommissionFee:
    """佣金配置与结算策略规则的费用。"""

    def test_native_only(self):
        config = CommissionConfig(
            id=1,
            criteria=MatchCriteria(trx_type="payin"),
            fixed_commission=Decimal("1"),
            rate=Decimal("2"),
        )
        fee = commission_fee(config, _ctx("500", usd_amount="6"))
        assert fee.amount == Decimal("11.00")
        assert fee.usd_amount is None

    def test_usd_fee_when_configured(self):
        config = CommissionConfig(
            id=1,
            criteria=MatchCriteria(trx_type="payin"),
            rate=Decimal("1"),
            usd_rate=Decimal("2"),
            fixed_usd_commission=Decimal("0.1"),
        )
        fee = commission_fee(config, _ctx("1000", usd_amount="12"))
        assert fee.usd_amount == Decimal("0.34")

    def test_usd_fee_skipped_without_usd_amount(self):
        config = CommissionConfig(id=1, criteria=MatchCriteria(trx_type="payin"), usd_rate=Decimal("2"))
        assert commission_fee(config, _ctx()).usd_amount is None

    def test_strategy_rule_fee(self):
        rule = StrategyRule(
            rule_id="R1",
            criteria=MatchCriteria(trx_type="payin"),
            fixed_fee=Decimal("3"),
            rate=Decimal("0.5"),
            max_fee=Decimal("5"),
        )
        fee = strategy_rule_fee(rule, _ctx("1000"))
        assert fee.amount == Decimal("5.00")
        assert fee.rate == Decimal("0.5")
