"""安全模块：在执行前给动作分级，高风险动作必须经操作员确认

分级宁可误报，不可漏报：不确定时一律判为需要确认。
"""

from typing import Iterable, List, Optional, Sequence, Tuple

from loguru import logger

from .intents import ActionIntent, ActionKind, AskApproval
from .models import PageSnapshot, RiskAssessment, RiskLevel

# 英文 + 俄文 + 中文；按小写子串匹配
DESTRUCTIVE_KEYWORDS: Tuple[str, ...] = (
    "delete", "remove", "cancel", "clear", "reset", "erase", "unsubscribe", "deactivate",
    "удалить", "удаление", "удали", "убрать", "отменить", "отмена", "очистить", "сбросить",
    "删除", "移除", "取消", "清空", "重置", "注销",
)

PAYMENT_KEYWORDS: Tuple[str, ...] = (
    "payment", "checkout", "order", "billing", "cart", "pay",
    "оплат", "заказ", "корзин", "платеж", "платёж",
    "支付", "结算", "订单", "付款", "购物车",
)

CONFIRM_KEYWORDS: Tuple[str, ...] = (
    "confirm", "submit", "pay", "buy", "purchase", "place order", "checkout",
    "подтверд", "оплатить", "купить", "отправить", "оформить",
    "确认", "提交", "支付", "购买", "下单", "付款",
)

SUBMIT_KEYWORDS: Tuple[str, ...] = (
    "submit", "send",
    "отправить", "отправ",
    "提交", "发送",
)

_MEDIUM_KINDS = (ActionKind.CLICK, ActionKind.TYPE_TEXT)


def _contains_any(texts: Iterable[str], keywords: Sequence[str]) -> Optional[str]:
    for text in texts:
        lowered = (text or "").lower()
        for keyword in keywords:
            if keyword in lowered:
                return keyword
    return None


class SecurityGate:
    """纯函数式的风险分级：classify(intent, snapshot)"""

    def __init__(
        self,
        destructive_keywords: Sequence[str] = DESTRUCTIVE_KEYWORDS,
        payment_keywords: Sequence[str] = PAYMENT_KEYWORDS,
        confirm_keywords: Sequence[str] = CONFIRM_KEYWORDS,
        submit_keywords: Sequence[str] = SUBMIT_KEYWORDS,
    ):
        self.destructive_keywords = tuple(k.lower() for k in destructive_keywords)
        self.payment_keywords = tuple(k.lower() for k in payment_keywords)
        self.confirm_keywords = tuple(k.lower() for k in confirm_keywords)
        self.submit_keywords = tuple(k.lower() for k in submit_keywords)

    def classify(self, intent: ActionIntent, snapshot: Optional[PageSnapshot]) -> RiskAssessment:
        reasons: List[str] = []
        selector = getattr(intent, "selector", "") or ""
        texts = (selector, intent.description, intent.reasoning or "")
        target = (selector, intent.description)

        if isinstance(intent, AskApproval):
            reasons.append(f"decider requested approval for '{intent.action}'")

        keyword = _contains_any(texts, self.destructive_keywords)
        if keyword:
            reasons.append(f"destructive keyword '{keyword}'")

        if intent.kind is ActionKind.CLICK:
            confirm = _contains_any(target, self.confirm_keywords)
            if confirm:
                if snapshot is None:
                    # 页面上下文未知时按最坏情况处理
                    reasons.append(f"'{confirm}' click without page context")
                else:
                    payment = _contains_any((snapshot.url, snapshot.description), self.payment_keywords)
                    if payment:
                        reasons.append(f"'{confirm}' click on payment page ('{payment}')")

            submit = _contains_any(target, self.submit_keywords)
            if submit and (snapshot is None or snapshot.has_forms):
                reasons.append(f"'{submit}' click with a form on the page")

        if reasons:
            level = RiskLevel.HIGH
        elif intent.kind in _MEDIUM_KINDS:
            level = RiskLevel.MEDIUM
        else:
            level = RiskLevel.LOW

        assessment = RiskAssessment(level=level, reasons=tuple(reasons))
        if assessment.requires_approval:
            logger.warning(f"⚠ 高风险动作: {intent.description} ({'; '.join(reasons)})")
        return assessment
