"""规则解析 / 派单引擎的业务异常。调用方根据 code 决定是否致命。"""


class EngineError(Exception):
    """引擎业务异常基类。"""

    code = "EngineError"

    def __init__(self, msg: str = ""):
        super().__init__(msg or self.__doc__)
        self.msg = msg or (self.__doc__ or "")


class NoMatchingRule(EngineError):
    """没有满足交易上下文的规则。"""

    code = "NoMatchingRule"


class InsufficientCandidates(EngineError):
    """过滤后的候选人数少于策略要求的最小值。"""

    code = "InsufficientCandidates"


class InvalidRuleConfiguration(EngineError):
    """规则自身字段互相矛盾。"""

    code = "InvalidRuleConfiguration"


class InvalidTransactionContext(EngineError):
    """交易上下文不满足调用前置条件。"""

    code = "InvalidTransactionContext"
