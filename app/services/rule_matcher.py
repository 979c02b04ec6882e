"""
规则匹配器：判断一条规则是否适用于一笔交易上下文。

纯函数，无副作用，可并发重复调用。匹配条件：
- status 为 active
- 规则归属为空（全局）或等于交易主体（专属）
- trx_type 完全相同
- trx_method / ccy / country 为通配或相等
- 金额落在本币区间内；设置了 USD 区间时按 USD 金额校验
- 时间落在 [start_at, expired_at) 内，且落在每日时段内（不支持跨零点）
"""

import os
from datetime import datetime
from decimal import Decimal
from typing import Optional
from zoneinfo import ZoneInfo

from dotenv import load_dotenv

from app.models.schemas import STATUS_ACTIVE, MatchCriteria, TransactionContext
from app.services.errors import InvalidRuleConfiguration

load_dotenv()

ENGINE_TIMEZONE = os.getenv("ENGINE_TIMEZONE")

SECONDS_PER_DAY = 86400

_WILDCARDS = {"", "all"}


def is_wildcard(value: Optional[str]) -> bool:
    """None、空串、all 均视为通配。"""
    return value is None or str(value).strip().lower() in _WILDCARDS


def _field_matches(rule_value: Optional[str], ctx_value: Optional[str]) -> bool:
    if is_wildcard(rule_value):
        return True
    if ctx_value is None:
        return False
    return str(rule_value).strip().lower() == str(ctx_value).strip().lower()


def _bound(value) -> Optional[Decimal]:
    """0 或空视为未设置。"""
    if value is None:
        return None
    value = Decimal(str(value))
    return value if value != 0 else None


def is_unrestricted(min_value, max_value) -> bool:
    return _bound(min_value) is None and _bound(max_value) is None


def amount_in_range(amount: Decimal, min_value, max_value) -> bool:
    """
    闭区间金额校验。两端都为 0/空表示不限；只设置一端则另一端开放。
    """
    low = _bound(min_value)
    high = _bound(max_value)
    if low is not None and amount < low:
        return False
    if high is not None and amount > high:
        return False
    return True


def local_seconds_of_day(timestamp_ms: int, tz_name: Optional[str] = None) -> int:
    """毫秒时间戳在引擎时区下距当日零点的秒数。"""
    tz_name = tz_name if tz_name is not None else ENGINE_TIMEZONE
    seconds = timestamp_ms / 1000
    if tz_name:
        dt = datetime.fromtimestamp(seconds, ZoneInfo(tz_name))
    else:
        dt = datetime.fromtimestamp(seconds)
    return dt.hour * 3600 + dt.minute * 60 + dt.second


def in_validity_window(criteria: MatchCriteria, timestamp_ms: int) -> bool:
    if criteria.start_at and timestamp_ms < criteria.start_at:
        return False
    if criteria.expired_at and timestamp_ms >= criteria.expired_at:
        return False
    return True


def in_daily_window(
    criteria: MatchCriteria, timestamp_ms: int, tz_name: Optional[str] = None
) -> bool:
    start = criteria.daily_start_time or 0
    end = criteria.daily_end_time or 0
    if start == 0 and end == 0:
        return True
    if end == 0:
        end = SECONDS_PER_DAY
    seconds = local_seconds_of_day(timestamp_ms, tz_name)
    return start <= seconds < end


def amount_matches(criteria: MatchCriteria, context: TransactionContext) -> bool:
    native_set = not is_unrestricted(criteria.min_amount, criteria.max_amount)
    usd_set = not is_unrestricted(criteria.min_usd_amount, criteria.max_usd_amount)

    if native_set and not amount_in_range(
        context.amount, criteria.min_amount, criteria.max_amount
    ):
        return False
    if usd_set:
        if context.usd_amount is None:
            # 仅以 USD 限定的规则在缺少 USD 金额时无法校验
            return native_set
        if not amount_in_range(
            context.usd_amount, criteria.min_usd_amount, criteria.max_usd_amount
        ):
            return False
    return True


def scope_matches(owner: Optional[str], context: TransactionContext) -> bool:
    return not owner or owner == context.subject_id


def prefilter(criteria: MatchCriteria, owner: Optional[str], context: TransactionContext) -> bool:
    """廉价的前置过滤：状态、归属、交易类型。"""
    return (
        criteria.status == STATUS_ACTIVE
        and scope_matches(owner, context)
        and criteria.trx_type == context.trx_type
    )


def matches(
    criteria: MatchCriteria,
    owner: Optional[str],
    context: TransactionContext,
    tz_name: Optional[str] = None,
) -> bool:
    """判断规则是否适用于交易上下文。"""
    if not prefilter(criteria, owner, context):
        return False
    if not _field_matches(criteria.trx_method, context.trx_method):
        return False
    if not _field_matches(criteria.ccy, context.ccy):
        return False
    if not _field_matches(criteria.country, context.country):
        return False
    if not amount_matches(criteria, context):
        return False
    if not in_validity_window(criteria, context.timestamp):
        return False
    return in_daily_window(criteria, context.timestamp, tz_name)


def validate_criteria(criteria: MatchCriteria, rule_id=None) -> None:
    """
    校验规则字段是否自洽，发现矛盾立即抛出，不做任何修正。

    Raises:
        InvalidRuleConfiguration: 缺少 trx_type、金额区间倒置、时间窗口倒置等。
    """
    label = f"规则 {rule_id}" if rule_id is not None else "规则"
    if not criteria.trx_type or is_wildcard(criteria.trx_type):
        raise InvalidRuleConfiguration(f"{label} 缺少交易类型")

    for low_name, high_name in (
        ("min_amount", "max_amount"),
        ("min_usd_amount", "max_usd_amount"),
    ):
        low = getattr(criteria, low_name)
        high = getattr(criteria, high_name)
        if (low is not None and low < 0) or (high is not None and high < 0):
            raise InvalidRuleConfiguration(f"{label} 金额不能为负数")
        if _bound(low) is not None and _bound(high) is not None and low > high:
            raise InvalidRuleConfiguration(
                f"{label} {low_name}={low} 大于 {high_name}={high}"
            )

    if criteria.start_at and criteria.expired_at and criteria.start_at >= criteria.expired_at:
        raise InvalidRuleConfiguration(f"{label} 生效时间不早于失效时间")

    start = criteria.daily_start_time or 0
    end = criteria.daily_end_time or 0
    for value in (start, end):
        if value < 0 or value > SECONDS_PER_DAY:
            raise InvalidRuleConfiguration(f"{label} 每日时段超出 0~86400 秒")
    if end and start >= end:
        # 不支持跨零点的时段，起止相同的时段永远不会命中
        raise InvalidRuleConfiguration(f"{label} 每日开始时间不早于结束时间")
