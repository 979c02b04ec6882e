"""
引擎路由：路由解析、佣金解析、结算解析、派单，以及轮询游标和派单日志查询。

请求体携带已物化的规则集合和交易上下文，引擎不读取配置存储。
成功返回 {code: 1, ...}，业务失败返回 {code: -1, error: 异常编码, msg: 描述}。
"""

import logging
from decimal import Decimal
from typing import Any, Optional

from fastapi import APIRouter, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from app.models.schemas import (
    STATUS_ACTIVE,
    Candidate,
    ChannelTrxConfig,
    CommissionConfig,
    Contract,
    ContractConfig,
    ContractSettleConfig,
    ContractTrxConfig,
    DispatchRouter,
    DispatchStrategy,
    MatchCriteria,
    RoutingRule,
    RoutingTarget,
    StrategyDetail,
    StrategyRule,
    TransactionContext,
)
from app.services.commission import commission_fee
from app.services.cursor_store import get_cursor_store
from app.services.dispatch_service import Dispatcher, list_dispatch_logs
from app.services.errors import EngineError
from app.services.resolver import resolve_commission, resolve_routing
from app.services.settlement import resolve_settlement

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/engine")

_CRITERIA_FIELDS = set(MatchCriteria.__dataclass_fields__)


# ── 请求模型 ──────────────────────────────────────────────


class CriteriaIn(BaseModel):
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
    daily_start_time: int = 0
    daily_end_time: int = 0
    priority: int = 0
    status: str = STATUS_ACTIVE

    def criteria(self) -> MatchCriteria:
        data = self.model_dump(include=_CRITERIA_FIELDS)
        return MatchCriteria(**data)


class ContextIn(BaseModel):
    subject_id: str
    trx_type: str
    amount: Decimal
    timestamp: int
    trx_method: Optional[str] = None
    ccy: Optional[str] = None
    country: Optional[str] = None
    usd_amount: Optional[Decimal] = None

    def to_model(self) -> TransactionContext:
        return TransactionContext(**self.model_dump())


class RoutingRuleIn(CriteriaIn):
    id: int
    mid: str = ""
    channel_code: str
    channel_account: Optional[str] = None
    channel_group: Optional[str] = None

    def to_model(self) -> RoutingRule:
        return RoutingRule(
            id=self.id,
            owner=self.mid,
            criteria=self.criteria(),
            target=RoutingTarget(
                channel_code=self.channel_code,
                channel_account=self.channel_account,
                channel_group=self.channel_group,
            ),
        )


class CommissionIn(CriteriaIn):
    id: int
    cid: str = ""
    fixed_commission: Decimal = Decimal("0")
    rate: Decimal = Decimal("0")
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

    def to_model(self) -> CommissionConfig:
        fee_fields = self.model_dump(
            exclude=_CRITERIA_FIELDS | {"id", "cid"}
        )
        return CommissionConfig(
            id=self.id, owner=self.cid, criteria=self.criteria(), **fee_fields
        )


class DispatchRouterIn(CriteriaIn):
    id: int
    code: str = ""
    user_id: str = ""
    user_type: str = "cashier_team"
    strategy_code: str

    def to_model(self) -> DispatchRouter:
        return DispatchRouter(
            id=self.id,
            code=self.code,
            owner=self.user_id,
            owner_type=self.user_type,
            criteria=self.criteria(),
            strategy_code=self.strategy_code,
        )


class DispatchStrategyIn(BaseModel):
    id: int
    code: str
    name: str = ""
    version: str = "1"
    priority: int = 0
    status: str = STATUS_ACTIVE
    criteria: Optional[CriteriaIn] = None
    rules: dict[str, Any] = Field(default_factory=dict)

    def to_model(self) -> DispatchStrategy:
        return DispatchStrategy(
            id=self.id,
            code=self.code,
            name=self.name,
            version=self.version,
            priority=self.priority,
            status=self.status,
            criteria=self.criteria.criteria() if self.criteria else None,
            rules=self.rules,
        )


class ChannelConfigIn(BaseModel):
    trx_method: Optional[str] = None
    ccy: Optional[str] = None
    min_amount: Optional[Decimal] = None
    max_amount: Optional[Decimal] = None


class CandidateIn(BaseModel):
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
    channel_config: Optional[ChannelConfigIn] = None
    score: float = 0.0
    weight: float = 1.0

    def to_model(self) -> Candidate:
        data = self.model_dump(exclude={"channel_config"})
        cfg = ChannelTrxConfig(**self.channel_config.model_dump()) if self.channel_config else None
        return Candidate(channel_config=cfg, **data)


class StrategyRuleIn(CriteriaIn):
    rule_id: str
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

    def to_model(self) -> StrategyRule:
        fee_fields = self.model_dump(exclude=_CRITERIA_FIELDS | {"rule_id"})
        return StrategyRule(rule_id=self.rule_id, criteria=self.criteria(), **fee_fields)


class StrategyDetailIn(BaseModel):
    id: int
    code: str
    settle_ccy: Optional[str] = None
    period: int = 0
    status: str = STATUS_ACTIVE
    rules: list[StrategyRuleIn] = Field(default_factory=list)

    def to_model(self) -> StrategyDetail:
        return StrategyDetail(
            id=self.id,
            code=self.code,
            settle_ccy=self.settle_ccy,
            period=self.period,
            status=self.status,
            rules=[r.to_model() for r in self.rules],
        )


class SettleConfigIn(CriteriaIn):
    id: int
    type: str
    pkg: str = ""
    strategies: list[str] = Field(default_factory=list)
    strategy_list: list[StrategyDetailIn] = Field(default_factory=list)

    def to_model(self) -> ContractSettleConfig:
        return ContractSettleConfig(
            id=self.id,
            type=self.type,
            pkg=self.pkg,
            criteria=self.criteria(),
            strategies=self.strategies,
            strategy_list=[s.to_model() for s in self.strategy_list],
        )


class TrxConfigIn(CriteriaIn):
    pkg: str = ""

    def to_model(self) -> ContractTrxConfig:
        return ContractTrxConfig(criteria=self.criteria(), pkg=self.pkg)


class ContractConfigIn(BaseModel):
    trx_type: str
    status: str = STATUS_ACTIVE
    configs: list[TrxConfigIn] = Field(default_factory=list)
    settle: list[SettleConfigIn] = Field(default_factory=list)

    def to_model(self) -> ContractConfig:
        return ContractConfig(
            trx_type=self.trx_type,
            status=self.status,
            configs=[c.to_model() for c in self.configs],
            settle=[s.to_model() for s in self.settle],
        )


class ContractIn(BaseModel):
    contract_id: str
    sid: str
    stype: str = "merchant"
    start_at: int = 0
    expired_at: int = 0
    status: str = STATUS_ACTIVE
    payin: Optional[ContractConfigIn] = None
    payout: Optional[ContractConfigIn] = None

    def to_model(self) -> Contract:
        return Contract(
            contract_id=self.contract_id,
            sid=self.sid,
            stype=self.stype,
            start_at=self.start_at,
            expired_at=self.expired_at,
            status=self.status,
            payin=self.payin.to_model() if self.payin else None,
            payout=self.payout.to_model() if self.payout else None,
        )


class RoutingRequest(BaseModel):
    context: ContextIn
    rules: list[RoutingRuleIn]


class CommissionRequest(BaseModel):
    context: ContextIn
    configs: list[CommissionIn]


class SettlementRequest(BaseModel):
    context: ContextIn
    contract: ContractIn


class DispatchRequest(BaseModel):
    context: ContextIn
    routers: list[DispatchRouterIn]
    strategies: list[DispatchStrategyIn]
    candidates: list[CandidateIn]


# ── 工具函数 ──────────────────────────────────────────────


def _error(e: EngineError) -> JSONResponse:
    return JSONResponse(content={"code": -1, "error": e.code, "msg": e.msg})


def _money(value: Optional[Decimal]) -> Optional[str]:
    return str(value) if value is not None else None


# ── 解析接口 ──────────────────────────────────────────────


@router.post("/routing/resolve")
async def routing_resolve(body: RoutingRequest):
    """选出交易应发往的渠道。"""
    try:
        resolution = resolve_routing([r.to_model() for r in body.rules], body.context.to_model())
    except EngineError as e:
        return _error(e)
    target = resolution.payload
    return JSONResponse(content={
        "code": 1,
        "rule_id": resolution.rule_id,
        "channel_code": target.channel_code,
        "channel_account": target.channel_account,
        "channel_group": target.channel_group,
    })


@router.post("/commission/resolve")
async def commission_resolve(body: CommissionRequest):
    """选出适用的佣金配置并计算手续费。"""
    context = body.context.to_model()
    try:
        resolution = resolve_commission([c.to_model() for c in body.configs], context)
    except EngineError as e:
        return _error(e)
    fee = commission_fee(resolution.rule, context)
    return JSONResponse(content={
        "code": 1,
        "rule_id": resolution.rule_id,
        "fee": _money(fee.amount),
        "rate": _money(fee.rate),
        "usd_fee": _money(fee.usd_amount),
    })


@router.post("/settlement/resolve")
async def settlement_resolve(body: SettlementRequest):
    """校验合约受理并解析结算周期与结算费用，无结算绑定时 settlement 为 null。"""
    try:
        decision = resolve_settlement(body.contract.to_model(), body.context.to_model())
    except EngineError as e:
        return _error(e)
    if decision is None:
        return JSONResponse(content={"code": 1, "settlement": None})
    return JSONResponse(content={
        "code": 1,
        "settlement": {
            "type": decision.settle_type,
            "settle_config_id": decision.settle_config_id,
            "strategy_code": decision.strategy_code,
            "rule_id": decision.rule_id,
            "settle_ccy": decision.settle_ccy,
            "fee": _money(decision.fee.amount),
            "rate": _money(decision.fee.rate),
            "usd_fee": _money(decision.fee.usd_amount),
        },
    })


# ── 派单 ──────────────────────────────────────────────────


@router.post("/dispatch")
async def dispatch(body: DispatchRequest):
    """生成有序的候选列表及逐个候选的过滤结果。"""
    dispatcher = Dispatcher(
        routers=[r.to_model() for r in body.routers],
        strategies=[s.to_model() for s in body.strategies],
    )
    try:
        result = dispatcher.dispatch(
            body.context.to_model(), [c.to_model() for c in body.candidates]
        )
    except EngineError as e:
        return _error(e)
    return JSONResponse(content={
        "code": 1,
        "router_id": result.router_id,
        "strategy_code": result.strategy_code,
        "candidates": result.candidate_ids,
        "trace": [
            {"id": r.candidate_id, "passed": r.passed, "reason": r.reason}
            for r in result.trace
        ],
    })


@router.get("/dispatch/cursors/{strategy_code}")
async def get_cursor(strategy_code: str):
    return {"code": 1, "strategy_code": strategy_code,
            "cursor": get_cursor_store().get(strategy_code)}


@router.delete("/dispatch/cursors/{strategy_code}")
async def delete_cursor(strategy_code: str):
    """策略删除时清理其轮询游标。"""
    get_cursor_store().delete(strategy_code)
    logger.info("已删除轮询游标: %s", strategy_code)
    return {"code": 1, "msg": "游标已删除"}


@router.get("/dispatch/logs")
async def dispatch_logs(
    strategy_code: Optional[str] = Query(None),
    limit: int = Query(50, ge=1, le=500),
):
    return {"code": 1, "data": list_dispatch_logs(strategy_code, limit)}
