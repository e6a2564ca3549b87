import json
import logging

import httpx
import pytest

from app.models.delivery_log import DeliveryLog
from app.schemas.autosell import DeliveryOutcome
from app.services.delivery_executor import execute_delivery
from app.services.stock_ledger import get_stock_stats

CONTEXT = {
    "orderId": "O1",
    "accountId": "acc-1",
    "itemId": "item-1",
    "buyerUserId": "buyer-9",
    "chatId": "chat-3",
    "skuText": "100次",
    "skuNumber": "100",
}


def _mock_client(handler):
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def _logs(db, order_id="O1"):
    return db.query(DeliveryLog).filter(DeliveryLog.order_id == order_id).all()


class TestFixed:
    @pytest.mark.asyncio
    async def test_fixed_content_delivered_and_logged(self, db, make_rule):
        rule = make_rule(delivery_content="CODE-A")

        result = await execute_delivery(db, rule, "O1", "acc-1", CONTEXT)

        assert result.success is True
        assert result.outcome == DeliveryOutcome.DELIVERED
        assert result.content == "CODE-A"
        logs = _logs(db)
        assert len(logs) == 1
        assert logs[0].status == "success"
        assert logs[0].content == "CODE-A"
        assert logs[0].rule_id == rule.id

    @pytest.mark.asyncio
    async def test_fixed_without_content_is_config_error(self, db, make_rule):
        rule = make_rule(delivery_content="")

        result = await execute_delivery(db, rule, "O1", "acc-1", CONTEXT)

        assert result.success is False
        assert result.outcome == DeliveryOutcome.CONFIG_ERROR
        assert result.error == "no content configured"
        logs = _logs(db)
        assert len(logs) == 1
        assert logs[0].status == "failed"
        assert logs[0].content == ""
        assert logs[0].error_message == "no content configured"


class TestStock:
    @pytest.mark.asyncio
    async def test_stock_unit_delivered(self, db, make_rule, add_stock):
        rule = make_rule(delivery_type="stock", delivery_content=None)
        add_stock(rule, "CARD-1")

        result = await execute_delivery(db, rule, "O1", "acc-1", CONTEXT)

        assert result.success is True
        assert result.content == "CARD-1"
        assert get_stock_stats(db, rule.id).available == 0
        assert _logs(db)[0].status == "success"

    @pytest.mark.asyncio
    async def test_empty_stock_is_logged_failure(self, db, make_rule):
        rule = make_rule(delivery_type="stock", delivery_content=None)

        result = await execute_delivery(db, rule, "O1", "acc-1", CONTEXT)

        assert result.success is False
        assert result.outcome == DeliveryOutcome.OUT_OF_STOCK
        assert result.error == "insufficient stock"
        assert _logs(db)[0].error_message == "insufficient stock"

    @pytest.mark.asyncio
    async def test_second_execution_for_same_order_does_not_claim(self, db, make_rule, add_stock):
        rule = make_rule(delivery_type="stock", delivery_content=None)
        add_stock(rule, "CARD-1", "CARD-2")

        await execute_delivery(db, rule, "O1", "acc-1", CONTEXT)
        again = await execute_delivery(db, rule, "O1", "acc-1", CONTEXT)

        assert again.outcome == DeliveryOutcome.ALREADY_DELIVERED
        assert get_stock_stats(db, rule.id).used == 1
        assert len(_logs(db)) == 1


class TestApi:
    @pytest.mark.asyncio
    async def test_response_template(self, db, make_rule):
        rule = make_rule(
            delivery_type="api",
            delivery_content=None,
            api_config={"url": "https://codes.example/get", "method": "GET", "response_template": "码:{{data.key}}"},
        )
        async with _mock_client(lambda req: httpx.Response(200, json={"data": {"key": "XYZ"}})) as client:
            result = await execute_delivery(db, rule, "O1", "acc-1", CONTEXT, http_client=client)

        assert result.success is True
        assert result.content == "码:XYZ"
        assert _logs(db)[0].content == "码:XYZ"

    @pytest.mark.asyncio
    async def test_unresolved_template_token_kept_and_warned(self, db, make_rule, caplog):
        caplog.set_level(logging.WARNING, logger="app.services.delivery_executor")
        rule = make_rule(
            delivery_type="api",
            delivery_content=None,
            api_config={"url": "https://codes.example/get", "response_template": "码:{{data.missing}}"},
        )
        async with _mock_client(lambda req: httpx.Response(200, json={"data": {"key": "XYZ"}})) as client:
            result = await execute_delivery(db, rule, "O1", "acc-1", CONTEXT, http_client=client)

        assert result.success is True
        assert result.content == "码:{{data.missing}}"
        assert any(
            r.levelno == logging.WARNING and "{{data.missing}}" in r.getMessage()
            for r in caplog.records
        )

    @pytest.mark.asyncio
    async def test_request_substitution_and_headers(self, db, make_rule):
        seen = {}

        def handler(request: httpx.Request):
            seen["url"] = str(request.url)
            seen["method"] = request.method
            seen["headers"] = request.headers
            seen["body"] = request.content.decode()
            return httpx.Response(200, json={"code": "C-1"})

        rule = make_rule(
            delivery_type="api",
            delivery_content=None,
            api_config={
                "url": "https://codes.example/issue/{{orderId}}?n={{skuNumber}}",
                "method": "post",
                "headers": {"Content-Type": "text/plain", "X-Token": "t"},
                "body": '{"buyer":"{{buyerUserId}}","sku":"{{skuText}}"}',
                "response_field": "code",
            },
        )
        async with _mock_client(handler) as client:
            result = await execute_delivery(db, rule, "O1", "acc-1", CONTEXT, http_client=client)

        assert result.content == "C-1"
        assert seen["url"] == "https://codes.example/issue/O1?n=100"
        assert seen["method"] == "POST"
        assert seen["headers"]["content-type"] == "text/plain"
        assert seen["headers"]["x-token"] == "t"
        assert json.loads(seen["body"]) == {"buyer": "buyer-9", "sku": "100次"}

    @pytest.mark.asyncio
    async def test_get_sends_no_body_and_default_content_type(self, db, make_rule):
        seen = {}

        def handler(request: httpx.Request):
            seen["body"] = request.content
            seen["content_type"] = request.headers.get("content-type")
            return httpx.Response(200, text="RAW-CODE")

        rule = make_rule(
            delivery_type="api",
            delivery_content=None,
            api_config={"url": "https://codes.example/get", "method": "GET", "body": "ignored"},
        )
        async with _mock_client(handler) as client:
            result = await execute_delivery(db, rule, "O1", "acc-1", CONTEXT, http_client=client)

        assert seen["body"] == b""
        assert seen["content_type"] == "application/json"
        # non-JSON body comes back as-is
        assert result.content == "RAW-CODE"

    @pytest.mark.asyncio
    async def test_raw_json_response_is_dumped(self, db, make_rule):
        rule = make_rule(
            delivery_type="api",
            delivery_content=None,
            api_config={"url": "https://codes.example/get"},
        )
        async with _mock_client(lambda req: httpx.Response(200, json={"k": "卡密"})) as client:
            result = await execute_delivery(db, rule, "O1", "acc-1", CONTEXT, http_client=client)

        assert json.loads(result.content) == {"k": "卡密"}
        assert "卡密" in result.content

    @pytest.mark.asyncio
    async def test_missing_response_field_fails(self, db, make_rule):
        rule = make_rule(
            delivery_type="api",
            delivery_content=None,
            api_config={"url": "https://codes.example/get", "response_field": "data.key"},
        )
        async with _mock_client(lambda req: httpx.Response(200, json={"data": {}})) as client:
            result = await execute_delivery(db, rule, "O1", "acc-1", CONTEXT, http_client=client)

        assert result.success is False
        assert result.outcome == DeliveryOutcome.API_ERROR
        assert "data.key" in result.error
        assert _logs(db)[0].status == "failed"

    @pytest.mark.asyncio
    async def test_non_2xx_fails(self, db, make_rule):
        rule = make_rule(
            delivery_type="api",
            delivery_content=None,
            api_config={"url": "https://codes.example/get", "response_field": "code"},
        )
        async with _mock_client(lambda req: httpx.Response(503, json={"code": "X"})) as client:
            result = await execute_delivery(db, rule, "O1", "acc-1", CONTEXT, http_client=client)

        assert result.success is False
        assert result.outcome == DeliveryOutcome.API_ERROR
        assert "503" in result.error

    @pytest.mark.asyncio
    async def test_network_error_is_converted(self, db, make_rule):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        rule = make_rule(
            delivery_type="api",
            delivery_content=None,
            api_config={"url": "https://codes.example/get"},
        )
        async with _mock_client(handler) as client:
            result = await execute_delivery(db, rule, "O1", "acc-1", CONTEXT, http_client=client)

        assert result.success is False
        assert result.outcome == DeliveryOutcome.API_ERROR
        assert "ConnectError" in result.error
        assert len(_logs(db)) == 1

    @pytest.mark.asyncio
    async def test_missing_api_config_is_config_error(self, db, make_rule):
        rule = make_rule(delivery_type="api", delivery_content=None, api_config=None)

        result = await execute_delivery(db, rule, "O1", "acc-1", CONTEXT)

        assert result.outcome == DeliveryOutcome.CONFIG_ERROR


@pytest.mark.asyncio
async def test_unknown_delivery_type(db, make_rule):
    rule = make_rule(delivery_type="carrier-pigeon")

    result = await execute_delivery(db, rule, "O1", "acc-1", CONTEXT)

    assert result.success is False
    assert result.outcome == DeliveryOutcome.CONFIG_ERROR
    assert _logs(db)[0].delivery_type == "carrier-pigeon"
