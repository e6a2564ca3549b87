# app/services/marketplace_client.py
"""
闲鱼 계정 세션(WebSocket) 레이어와의 경계
- 연결/재연결/서명/쿠키 갱신은 이 프로젝트 범위 밖
- 여기서는 계정별 클라이언트가 제공해야 하는 최소 인터페이스와
  account_id -> client 조회용 레지스트리만 정의
"""
import logging
from typing import Any, Dict, Optional, Protocol

logger = logging.getLogger(__name__)


class MarketplaceClientError(Exception):
    """세션 레이어 호출 실패"""
    pass


class MarketplaceClient(Protocol):
    account_id: str

    def is_connected(self) -> bool: ...

    async def fetch_order_detail(self, order_id: str) -> Optional[Dict[str, Any]]:
        """Raw detail response, shaped like {"data": {...}}, or None."""
        ...


class ClientRegistry:
    """
    계정별 클라이언트 조회
    전역 "현재 클라이언트" 대신 이 객체를 명시적으로 넘긴다.
    """

    def __init__(self) -> None:
        self._clients: Dict[str, MarketplaceClient] = {}

    def register(self, client: MarketplaceClient) -> None:
        self._clients[client.account_id] = client
        logger.info("클라이언트 등록: account=%s", client.account_id)

    def unregister(self, account_id: str) -> None:
        self._clients.pop(account_id, None)

    def get_client(self, account_id: str, require_connected: bool = True) -> Optional[MarketplaceClient]:
        client = self._clients.get(account_id)
        if client is None:
            return None
        if require_connected and not client.is_connected():
            return None
        return client

    def __len__(self) -> int:
        return len(self._clients)
