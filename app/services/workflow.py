# app/services/workflow.py
"""
외부 워크플로 엔진 인터페이스
규칙에 workflow_id 가 연결돼 있으면 직접 발송 대신 워크플로를 시작한다.
"""
from typing import Optional, Protocol

from pydantic import BaseModel

# 같은 주문으로 이미 실행 중일 때 엔진이 돌려주는 에러 (치명적 아님)
WORKFLOW_ALREADY_RUNNING = "workflow already executing"


class WorkflowContext(BaseModel):
    order_id: str
    account_id: str
    rule_id: int
    item_id: Optional[str] = None
    buyer_user_id: Optional[str] = None
    chat_id: Optional[str] = None
    sku_text: Optional[str] = None


class WorkflowResult(BaseModel):
    success: bool
    error: Optional[str] = None


class WorkflowRunner(Protocol):
    async def start_workflow_execution(
        self, workflow_id: int, context: WorkflowContext
    ) -> WorkflowResult: ...


def is_already_running(result: WorkflowResult) -> bool:
    return not result.success and (result.error or "").strip() == WORKFLOW_ALREADY_RUNNING
