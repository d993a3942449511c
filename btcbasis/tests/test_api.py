"""
API tests through FastAPI's TestClient against an isolated SQLite database.

Run: pytest btcbasis/tests/test_api.py -v
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from btcbasis import main
from btcbasis.exceptions import NoPriceAvailable
from btcbasis.models.price import SpotPrice
from btcbasis.services import bitcoin
from btcbasis.services.bitcoin import PriceQuote
from btcbasis.services.transaction import create_order_record, get_raw_transactions
from btcbasis.services.normalizer import parse_date

USER = "alice"
AS_OF = "2024-06-15T12:00:00Z"


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def create_tx(client, **fields):
    payload = {"user_id": USER}
    payload.update(fields)
    return client.post("/api/transactions/", json=payload)


def seed_scenario(client):
    """Two buys (10k, 30k) and one sale of 1 BTC for 40k."""
    for date, btc, usd in (("2024-01-01T00:00:00Z", "1", "10000"), ("2024-01-02T00:00:00Z", "1", "30000")):
        r = create_tx(
            client, type="buy", date=date,
            sent_amount=usd, sent_currency="USD",
            received_amount=btc, received_currency="BTC",
        )
        assert r.status_code == 201, r.text
    r = create_tx(
        client, type="sell", date="2024-01-03T00:00:00Z",
        sent_amount="1", sent_currency="BTC",
        received_amount="40000", received_currency="USD",
    )
    assert r.status_code == 201, r.text


def get_cost_basis(client, **params):
    query = {"user_id": USER, "as_of": AS_OF, "price": "50000"}
    query.update(params)
    return client.get("/api/calculations/cost-basis", params=query)


# =============================================================================
# TRANSACTIONS
# =============================================================================

class TestTransactionsAPI:

    def test_create_and_list(self, client):
        r = create_tx(
            client, type="buy", date="2024-01-01T00:00:00Z",
            sent_amount="10000", sent_currency="USD",
            received_amount="0.25", received_currency="BTC",
            comment="first stack",
        )
        assert r.status_code == 201, r.text
        created = r.json()
        assert created["type"] == "buy"
        assert Decimal(str(created["received_amount"])) == Decimal("0.25")

        listing = client.get("/api/transactions/", params={"user_id": USER}).json()
        assert [tx["id"] for tx in listing] == [created["id"]]
        assert client.get("/api/transactions/", params={"user_id": "bob"}).json() == []

    def test_missing_leg_is_rejected(self, client):
        r = create_tx(client, type="sell", date="2024-01-01T00:00:00Z", received_amount="100", received_currency="USD")
        assert r.status_code == 400

    def test_negative_amount_is_rejected(self, client):
        r = create_tx(client, type="buy", date="2024-01-01T00:00:00Z", received_amount="-1")
        assert r.status_code == 422

    def test_delete(self, client):
        created = create_tx(
            client, type="deposit", date="2024-01-01T00:00:00Z",
            received_amount="0.1", received_currency="BTC", price="40000",
        ).json()
        assert client.delete(f"/api/transactions/{created['id']}").status_code == 204
        assert client.delete(f"/api/transactions/{created['id']}").status_code == 404

    def test_raw_rows_merge_legacy_orders(self, client, test_db):
        seed_scenario(client)
        create_order_record({
            "user_id": USER, "type": "Buy", "date": parse_date("2023-12-31"),
            "buy_amount": Decimal("5000"), "buy_currency": "USD",
            "received_amount": Decimal("0.5"), "received_currency": "BTC",
        }, test_db)
        rows = get_raw_transactions(test_db, USER)
        assert [row.type for row in rows] == ["Buy", "buy", "buy", "sell"]


# =============================================================================
# CALCULATIONS
# =============================================================================

class TestCalculationsAPI:

    def test_cost_basis_fifo(self, client):
        seed_scenario(client)
        r = get_cost_basis(client, method="FIFO")
        assert r.status_code == 200, r.text
        body = r.json()
        assert body["method"] == "FIFO"
        assert body["realized_gains"] == 30000.0
        assert body["remaining_btc"] == 1.0
        assert body["total_cost_basis"] == 30000.0
        assert body["unrealized_gain"] == 20000.0
        assert body["diagnostics"] == []
        assert "not tax advice" in body["disclaimer"]

    def test_cost_basis_average_label(self, client):
        seed_scenario(client)
        body = get_cost_basis(client, method="Average Cost").json()
        assert body["method"] == "AVERAGE"
        assert body["realized_gains"] == 20000.0

    def test_compare(self, client):
        seed_scenario(client)
        r = client.get("/api/calculations/cost-basis/compare", params={"user_id": USER, "as_of": AS_OF, "price": "50000"})
        assert r.status_code == 200, r.text
        results = r.json()["results"]
        assert set(results) == {"FIFO", "LIFO", "HIFO", "AVERAGE"}
        assert results["LIFO"]["realized_gains"] == 10000.0
        assert results["HIFO"]["realized_gains"] == 10000.0

    def test_legacy_order_included(self, client, test_db):
        create_order_record({
            "user_id": USER, "type": "Buy", "date": parse_date("2023-12-31"),
            "buy_amount": Decimal("5000"), "buy_currency": "USD",
            "received_amount": Decimal("0.5"), "received_currency": "BTC",
        }, test_db)
        body = get_cost_basis(client).json()
        assert body["remaining_btc"] == 0.5
        assert body["total_cost_basis"] == 5000.0

    def test_empty_history(self, client):
        body = get_cost_basis(client).json()
        assert body["remaining_btc"] == 0
        assert body["total_cost_basis"] == 0

    def test_missing_user_id(self, client):
        r = client.get("/api/calculations/cost-basis", params={"price": "50000"})
        assert r.status_code == 400

    def test_unknown_method(self, client):
        r = get_cost_basis(client, method="SPECIFIC")
        assert r.status_code == 400

    def test_no_price_returns_502(self, client, monkeypatch):
        async def no_price():
            raise NoPriceAvailable()

        monkeypatch.setattr(bitcoin, "get_current_quote", no_price)
        seed_scenario(client)
        r = client.get("/api/calculations/cost-basis", params={"user_id": USER})
        assert r.status_code == 502
        assert r.json()["detail"] == "No Bitcoin price available."

    def test_cached_spot_price_used(self, client, test_db, monkeypatch):
        async def must_not_fetch():
            raise AssertionError("live fetch not expected")

        monkeypatch.setattr(bitcoin, "get_current_quote", must_not_fetch)
        bitcoin.save_spot_price(test_db, Decimal("60000"), source="test")
        seed_scenario(client)
        body = client.get("/api/calculations/cost-basis", params={"user_id": USER, "as_of": AS_OF}).json()
        assert body["unrealized_gain"] == 30000.0

    def test_stale_cached_price_is_refetched(self, client, test_db, monkeypatch):
        async def live_quote():
            return PriceQuote(Decimal("90000"), "coingecko")

        monkeypatch.setattr(bitcoin, "get_current_quote", live_quote)
        old = datetime.now(timezone.utc) - timedelta(days=400)
        test_db.add(SpotPrice(price_usd=Decimal("60000"), source="coindesk", updated_at=old))
        test_db.commit()
        create_tx(
            client, type="buy", date="2024-01-01T00:00:00Z",
            sent_amount="10000", sent_currency="USD",
            received_amount="1", received_currency="BTC",
        )

        body = client.get("/api/calculations/cost-basis", params={"user_id": USER, "as_of": AS_OF}).json()
        assert body["unrealized_gain"] == 80000.0
        latest = test_db.query(SpotPrice).order_by(SpotPrice.id.desc()).first()
        assert latest.price_usd == Decimal("90000")
        assert latest.source == "coingecko"

    def test_older_legacy_order_columns(self, client, test_db):
        for order in (
            {"type": "buy", "date": parse_date("2024-01-01"), "received_btc_amount": Decimal("1"), "buy_fiat_amount": Decimal("10000")},
            {"type": "sell", "date": parse_date("2024-02-01"), "sell_btc_amount": Decimal("0.5"), "received_fiat_amount": Decimal("8000")},
        ):
            create_order_record(dict(order, user_id=USER), test_db)
        body = get_cost_basis(client).json()
        assert body["remaining_btc"] == 0.5
        assert body["realized_gains"] == 3000.0

    def test_monthly_uses_stored_closes(self, client):
        seed_scenario(client)
        r = client.put("/api/bitcoin/price/monthly/2024-02", params={"close_usd": "45000"})
        assert r.status_code == 200, r.text

        r = client.get("/api/calculations/monthly", params={"user_id": USER, "as_of": AS_OF, "price": "50000"})
        assert r.status_code == 200, r.text
        body = r.json()
        months = [p["month"] for p in body["points"]]
        assert months == ["2024-01", "2024-02", "2024-03", "2024-04", "2024-05", "2024-06"]
        assert body["points"][1]["btc_price"] == 45000.0
        assert body["points"][-1]["is_current_month"] is True
        assert body["moving_average_short"][:2] == [None, None]

    def test_performance(self, client):
        seed_scenario(client)
        r = client.get("/api/calculations/performance", params={"user_id": USER, "as_of": AS_OF, "price": "50000"})
        assert r.status_code == 200, r.text
        body = r.json()
        assert body["total_invested"] == 40000.0
        assert body["current_value"] == 50000.0
        assert len(body["hodl_age_distribution"]) == 5


# =============================================================================
# BITCOIN PRICE
# =============================================================================

class TestBitcoinAPI:

    def test_price_is_cached(self, client, test_db, monkeypatch):
        async def fixed_quote():
            return PriceQuote(Decimal("65000"), "kraken")

        monkeypatch.setattr(bitcoin, "get_current_quote", fixed_quote)
        r = client.get("/api/bitcoin/price")
        assert r.status_code == 200
        assert r.json() == {"USD": 65000.0}
        assert bitcoin.get_latest_spot_price(test_db) == Decimal("65000")
        assert test_db.query(SpotPrice).one().source == "kraken"

    def test_bad_monthly_close_month(self, client):
        r = client.put("/api/bitcoin/price/monthly/2024-13", params={"close_usd": "1"})
        assert r.status_code == 400

    @pytest.mark.parametrize("date", ["2024/01/01", "2999-01-01"])
    def test_bad_history_date(self, client, date):
        r = client.get("/api/bitcoin/price/history", params={"date": date})
        assert r.status_code == 400


class TestAppStartup:

    def test_tables_created_on_startup(self, monkeypatch):
        calls = []
        monkeypatch.setattr(main, "create_tables", lambda: calls.append(True))
        with TestClient(main.app) as client:
            assert client.get("/").status_code == 200
        assert calls == [True]
