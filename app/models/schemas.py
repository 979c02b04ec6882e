"""
数据模型 / 类型定义，供各模块引用。
使用 dataclass 保持轻量，不引入 ORM。

时间戳统一为毫秒（与管理后台一致），金额统一为 Decimal。
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Optional

STATUS_ACTIVE = "active"
STATUS_INACTIVE = "inactive"


# ── 通用匹配条件 ──────────────────────────────────────────


@dataclass
class MatchCriteria:
    trx_type: str
    trx_method: Optional[str] = None
    ccy: Optional[str] = None
    country: Optional[str] = None
    min_amount: Optional[Decimal] = None
    max_amount: Optional[Decimal] = None
    min_usd_amount: Optional[Decimal] = None
    max_usd_amount: Optional[Decimal] = None
    start_at: int = 0
    expired_at: int = 0
    daily_start_time: int = 0  # 当日零点起的秒数
    daily_end_time: int = 0
    priority: int = 0
    status: str = STATUS_ACTIVE


@dataclass
class TransactionContext:
    subject_id: str
    trx_type: str
    amount: Decimal
    timestamp: int
    trx_method: Optional[str] = None
    ccy: Optional[str] = None
    country: Optional[str] = None
    usd_amount: Optional[Decimal] = None


# ── 路由 / 佣金 ──────────────────────────────────────────


@dataclass
class RoutingTarget:
    channel_code: str
    channel_account: Optional[str] = None
    channel_group: Optional[str] = None


@dataclass
class RoutingRule:
    id: int
    criteria: MatchCriteria
    target: RoutingTarget
    owner: str = ""  # mid，空表示全局配置


@dataclass
class CommissionConfig:
    id: int
    criteria: MatchCriteria
    owner: str = ""  # cid，空表示全局配置
    fixed_commission: Decimal = Decimal("0")
    rate: Decimal = Decimal("0")  # 百分比
    min_fee: Optional[Decimal] = None
    max_fee: Optional[Decimal] = None
    min_rate: Optional[Decimal] = None
    max_rate: Optional[Decimal] = None
    fixed_usd_commission: Optional[Decimal] = None
    usd_rate: Optional[Decimal] = None
    min_usd_fee: Optional[Decimal] = None
    max_usd_fee: Optional[Decimal] = None
    min_usd_rate: Optional[Decimal] = None
    max_usd_rate: Optional[Decimal] = None


@dataclass
class Fee:
    amount: Decimal
    rate: Decimal
    usd_amount: Optional[Decimal] = None


# ── 派单 ────────────────────────────────────────────────


@dataclass
class DispatchRouter:
    id: int
    criteria: MatchCriteria
    strategy_code: str
    code: str = ""
    owner: str = ""  # 车队或成员 ID，空表示全局
    owner_type: str = "cashier_team"


@dataclass
class DispatchStrategy:
    id: int
    code: str
    rules: Any  # DispatchRules，由 dispatch_rules.load_rules 校验生成
    name: str = ""
    version: str = "1"
    criteria: Optional[MatchCriteria] = None
    priority: int = 0
    status: str = STATUS_ACTIVE


@dataclass
class ChannelTrxConfig:
    """候选账户自身渠道的交易配置。"""
    trx_method: Optional[str] = None
    ccy: Optional[str] = None
    min_amount: Optional[Decimal] = None
    max_amount: Optional[Decimal] = None


@dataclass
class Candidate:
    id: str
    user_id: str = ""
    user_online: bool = False
    user_status: str = STATUS_ACTIVE
    user_payin_status: str = STATUS_ACTIVE
    user_payout_status: str = STATUS_ACTIVE
    account_online: bool = False
    account_status: str = STATUS_ACTIVE
    account_payin_status: str = STATUS_ACTIVE
    account_payout_status: str = STATUS_ACTIVE
    available_balance: Decimal = Decimal("0")
    upi_id: Optional[str] = None
    channel_config: Optional[ChannelTrxConfig] = None
    score: float = 0.0
    weight: float = 1.0


@dataclass
class CandidateResult:
    candidate_id: str
    passed: bool
    reason: Optional[str] = None  # 未通过时记录第一个不满足的规则


@dataclass
class Resolution:
    rule_id: Any
    payload: Any
    rule: Any = None


@dataclass
class DispatchResult:
    router_id: int
    strategy_code: str
    candidates: list[Candidate] = field(default_factory=list)
    trace: list[CandidateResult] = field(default_factory=list)

    @property
    def candidate_ids(self) -> list[str]:
        return [c.id for c in self.candidates]


# ── 合约 / 结算 ──────────────────────────────────────────


@dataclass
class StrategyRule:
    rule_id: str
    criteria: MatchCriteria
    fixed_fee: Decimal = Decimal("0")
    rate: Decimal = Decimal("0")
    min_fee: Optional[Decimal] = None
    max_fee: Optional[Decimal] = None
    min_rate: Optional[Decimal] = None
    max_rate: Optional[Decimal] = None
    fixed_usd_fee: Optional[Decimal] = None
    usd_rate: Optional[Decimal] = None
    min_usd_fee: Optional[Decimal] = None
    max_usd_fee: Optional[Decimal] = None
    min_usd_rate: Optional[Decimal] = None
    max_usd_rate: Optional[Decimal] = None
    period: int = 0


@dataclass
class StrategyDetail:
    id: int
    code: str
    rules: list[StrategyRule] = field(default_factory=list)
    settle_ccy: Optional[str] = None
    period: int = 0
    status: str = STATUS_ACTIVE


@dataclass
class ContractTrxConfig:
    criteria: MatchCriteria
    pkg: str = ""


@dataclass
class ContractSettleConfig:
    """结算绑定：结算周期 + 匹配条件 + 策略编码列表。"""
    id: int
    type: str  # T0、T1、T2、T3、W1、M1
    criteria: MatchCriteria
    strategies: list[str] = field(default_factory=list)
    strategy_list: list[StrategyDetail] = field(default_factory=list)
    owner: str = ""
    pkg: str = ""


@dataclass
class ContractConfig:
    trx_type: str
    status: str = STATUS_ACTIVE
    configs: list[ContractTrxConfig] = field(default_factory=list)
    settle: list[ContractSettleConfig] = field(default_factory=list)


@dataclass
class Contract:
    contract_id: str
    sid: str  # 商户ID或车队ID
    stype: str = "merchant"  # merchant 或 cashier_team
    start_at: int = 0
    expired_at: int = 0
    status: str = STATUS_ACTIVE
    payin: Optional[ContractConfig] = None
    payout: Optional[ContractConfig] = None


@dataclass
class SettlementDecision:
    settle_type: str
    settle_config_id: int
    strategy_code: str
    rule_id: str
    fee: Fee
    settle_ccy: Optional[str] = None
