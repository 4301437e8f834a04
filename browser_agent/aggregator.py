"""汇总模块：把逐个动作的结果整理成一条响应"""

import logging
from typing import List

from .models import ActionPlan, ActionResult, CommandResponse
from .session import SessionManager

logger = logging.getLogger(__name__)


def summarize(plan: ActionPlan, results: List[ActionResult]) -> str:
    """全部成功 / 部分成功 / 全部失败 三种消息，附带 LLM 的分析"""
    succeeded = sum(1 for r in results if r.success)
    if results and succeeded == len(results):
        message = f"✅ Successfully executed: {plan.intent}"
    elif succeeded:
        message = f"⚠️ Partially completed: {plan.intent} (some actions failed)"
    else:
        message = f"❌ Failed to execute: {plan.intent}"

    if plan.reasoning:
        message += f"\n\n💭 AI Analysis: {plan.reasoning}"
    return message


class ResultAggregator:
    def __init__(self, session_manager: SessionManager):
        self.session_manager = session_manager

    async def aggregate(self, plan: ActionPlan, results: List[ActionResult]) -> CommandResponse:
        await self.session_manager.refresh_live_view_url()
        session = self.session_manager.session
        return CommandResponse(
            success=any(r.success for r in results),
            message=summarize(plan, results),
            session_id=session.id if session else None,
            live_view_url=session.live_view_url if session else None,
            results=list(results),
            actions=[r.description for r in results],
            plan=plan,
        )
