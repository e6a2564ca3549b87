"""Shared fixtures: a temp-file SQLite database per test, rule factory, fake session client."""

import pytest
from sqlalchemy.orm import sessionmaker

from app.core.database import Base, make_engine
from app.models import autosell_rule, delivery_log, order, stock_item  # noqa: F401
from app.models.autosell_rule import AutoSellRule
from app.models.stock_item import StockItem


@pytest.fixture
def engine(tmp_path):
    engine = make_engine(f"sqlite:///{tmp_path / 'test.db'}")
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def make_rule(db):
    """Insert an AutoSellRule; ids follow insertion order (catalog order)."""

    def _make(**kwargs):
        fields = dict(
            name="rule",
            enabled=True,
            delivery_type="fixed",
            delivery_content="CODE",
            trigger_on="paid",
            delay_seconds=0,
        )
        fields.update(kwargs)
        rule = AutoSellRule(**fields)
        db.add(rule)
        db.commit()
        db.refresh(rule)
        return rule

    return _make


@pytest.fixture
def add_stock(db):
    def _add(rule, *contents):
        for content in contents:
            db.add(StockItem(rule_id=rule.id, content=content))
        db.commit()

    return _add


class FakeMarketplaceClient:
    """Stands in for a connected account session; replays queued detail responses."""

    def __init__(self, account_id="acc-1", responses=None, connected=True):
        self.account_id = account_id
        self.connected = connected
        self.responses = list(responses or [])
        self.calls = []

    def is_connected(self):
        return self.connected

    async def fetch_order_detail(self, order_id):
        self.calls.append(order_id)
        resp = self.responses.pop(0) if self.responses else None
        if isinstance(resp, Exception):
            raise resp
        return resp


@pytest.fixture
def fake_client_cls():
    return FakeMarketplaceClient


def build_detail(
    status=2,
    status_text=None,
    item_id="item-1",
    buyer_id="buyer-9",
    item_info=None,
    rows=None,
):
    data = {
        "status": status,
        "itemId": item_id,
        "peerUserId": buyer_id,
        "components": [
            {
                "render": "orderInfoVO",
                "data": {
                    "itemInfo": item_info if item_info is not None else {"title": "测试商品"},
                    "orderInfoList": rows if rows is not None else [],
                    "priceInfo": {"amount": {"value": "9.90"}},
                },
            }
        ],
    }
    if status_text is not None:
        data["utArgs"] = {"orderMainTitle": status_text}
    return {"data": data}


@pytest.fixture
def make_detail():
    return build_detail
