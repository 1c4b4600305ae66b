"""Platform adapters against mocked HTTP: mapping, pagination, failures."""

import asyncio
import json

import httpx
import pytest

from predfusion.errors import TransportError
from predfusion.ingestion import ADAPTERS, KalshiAdapter, LimitlessAdapter, PolymarketAdapter
from predfusion.ingestion.normalize import normalize
from predfusion.ingestion.rate_limit import TokenBucket


def _transport(handler, seen=None):
    def wrapped(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(request)
        return handler(request)

    return httpx.MockTransport(wrapped)


def _fetch(adapter):
    return asyncio.run(adapter.fetch_listings())


GAMMA_ROW = {
    "id": "253591",
    "question": "Will Bitcoin reach $100k by December 31, 2025?",
    "category": "Crypto",
    "outcomes": '["Yes", "No"]',
    "outcomePrices": '["0.62", "0.38"]',
    "volume24hr": 125000.5,
    "liquidityNum": "40000",
    "endDate": "2025-12-31T12:00:00Z",
    "slug": "bitcoin-100k-2025",
    "bestBid": 0.61,
    "bestAsk": 0.63,
}


def test_registry_lists_platforms():
    assert set(ADAPTERS) == {"polymarket", "kalshi", "limitless"}
    assert ADAPTERS["kalshi"] is KalshiAdapter


def test_polymarket_maps_json_string_fields():
    adapter = PolymarketAdapter(transport=_transport(lambda r: httpx.Response(200, json=[GAMMA_ROW])))
    result = _fetch(adapter)
    assert result.platform_id == "polymarket"
    assert result.skipped == 0
    [rec] = result.records
    assert rec["external_id"] == "253591"
    assert rec["outcomes"] == [{"name": "Yes", "price": 0.62}, {"name": "No", "price": 0.38}]
    assert rec["volume_24h"] == 125000.5
    assert rec["liquidity"] == 40000.0
    assert rec["url"] == "https://polymarket.com/market/bitcoin-100k-2025"
    assert rec["orderbook"]["asks"][0]["price"] == 0.63

    lst = normalize(rec, "polymarket", 1_700_000_000_000)
    assert lst is not None
    assert lst.entry_price("yes") == 0.63
    assert lst.spread == 0.0


def test_polymarket_offset_pagination_and_closed_filter():
    seen = []
    pages = {
        0: [dict(GAMMA_ROW, id="1"), dict(GAMMA_ROW, id="2", closed=True)],
        2: [dict(GAMMA_ROW, id="3")],
    }

    def handler(request):
        assert request.url.params["closed"] == "false"
        return httpx.Response(200, json=pages[int(request.url.params["offset"])])

    adapter = PolymarketAdapter(page_size=2, max_pages=5, transport=_transport(handler, seen))
    result = _fetch(adapter)
    assert [r["external_id"] for r in result.records] == ["1", "3"]
    assert len(seen) == 2


def test_polymarket_single_fetch_404_is_none():
    adapter = PolymarketAdapter(transport=_transport(lambda r: httpx.Response(404, json={"error": "nope"})))
    assert asyncio.run(adapter.fetch_listing("missing")) is None


def test_malformed_rows_skipped_and_counted():
    rows = [GAMMA_ROW, {"question": "no id here"}, "not-an-object"]
    adapter = PolymarketAdapter(transport=_transport(lambda r: httpx.Response(200, json=rows)))
    result = _fetch(adapter)
    assert len(result.records) == 1
    assert result.skipped == 2


KALSHI_ROW = {
    "ticker": "PRES-24-DJT",
    "title": "Will Donald Trump win the 2024 presidential election?",
    "category": "Politics",
    "yes_bid": 47,
    "yes_ask": 48,
    "no_bid": 51,
    "no_ask": 53,
    "volume_24h": 9000,
    "open_interest": 15000,
    "close_time": "2024-11-05T23:00:00Z",
}


def test_kalshi_cents_and_auth_header():
    seen = []
    adapter = KalshiAdapter(
        api_key="secret-token",
        transport=_transport(lambda r: httpx.Response(200, json={"markets": [KALSHI_ROW], "cursor": ""}), seen),
    )
    [rec] = _fetch(adapter).records
    assert rec["outcomes"] == [{"name": "Yes", "price": 0.48}, {"name": "No", "price": 0.53}]
    assert rec["liquidity"] == 15000.0
    assert rec["orderbook"]["bids"][0]["price"] == 0.47
    assert seen[0].headers["Authorization"] == "Bearer secret-token"
    assert seen[0].url.params["status"] == "open"


def test_kalshi_zero_quotes_are_unpriced():
    row = dict(KALSHI_ROW, yes_bid=0, yes_ask=0, no_bid=None, no_ask=0)
    rec = KalshiAdapter().map_record(row)
    assert rec["outcomes"] == []
    assert rec["orderbook"] is None
    assert normalize(rec, "kalshi", 1_700_000_000_000) is None


def test_kalshi_cursor_pagination():
    def handler(request):
        if "cursor" not in request.url.params:
            return httpx.Response(200, json={"markets": [dict(KALSHI_ROW, ticker="A")], "cursor": "next"})
        assert request.url.params["cursor"] == "next"
        return httpx.Response(200, json={"markets": [dict(KALSHI_ROW, ticker="B")], "cursor": None})

    adapter = KalshiAdapter(max_pages=3, transport=_transport(handler))
    assert [r["external_id"] for r in _fetch(adapter).records] == ["A", "B"]


def test_kalshi_single_fetch_unwraps_market():
    def handler(request):
        assert request.url.path.endswith("/markets/PRES-24-DJT")
        return httpx.Response(200, json={"market": KALSHI_ROW})

    adapter = KalshiAdapter(transport=_transport(handler))
    rec = asyncio.run(adapter.fetch_listing("PRES-24-DJT"))
    assert rec["external_id"] == "PRES-24-DJT"


def test_limitless_percent_prices_and_odds():
    rows = [
        {"id": 7, "title": "Will ETH flip BTC in 2025?", "prices": [12.5, 87.5], "category": {"name": "Crypto"}},
        {"id": 8, "title": "Will SOL hit $500?", "odds": {"yes": "0.2", "no": "0.8"}, "slug": "sol-500"},
    ]
    adapter = LimitlessAdapter(transport=_transport(lambda r: httpx.Response(200, json={"data": rows})))
    first, second = _fetch(adapter).records
    assert first["external_id"] == "7"
    assert first["outcomes"] == [{"name": "Yes", "price": 0.125}, {"name": "No", "price": 0.875}]
    assert first["category"] == "Crypto"
    assert second["outcomes"] == [{"name": "Yes", "price": 0.2}, {"name": "No", "price": 0.8}]
    assert second["url"] == "https://limitless.exchange/markets/sol-500"


@pytest.mark.parametrize(
    "handler",
    [
        lambda r: httpx.Response(500, text="upstream exploded"),
        lambda r: httpx.Response(401, json={"error": "unauthorized"}),
        lambda r: httpx.Response(200, content=b"<html>not json</html>"),
    ],
    ids=["server-error", "auth", "bad-json"],
)
def test_transport_failures_raise_transport_error(handler):
    adapter = KalshiAdapter(transport=_transport(handler))
    with pytest.raises(TransportError) as exc:
        _fetch(adapter)
    assert exc.value.platform_id == "kalshi"


def test_connection_error_raises_transport_error():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    adapter = LimitlessAdapter(transport=_transport(handler))
    with pytest.raises(TransportError, match="ConnectError"):
        _fetch(adapter)


def test_rows_pass_through_as_json_payload():
    body = json.dumps([GAMMA_ROW]).encode()
    adapter = PolymarketAdapter(
        transport=_transport(lambda r: httpx.Response(200, content=body, headers={"content-type": "application/json"}))
    )
    assert len(_fetch(adapter).records) == 1


def test_token_bucket_reports_wait_for_deficit():
    now = [100.0]
    bucket = TokenBucket(rate=0.5, capacity=2, monotonic=lambda: now[0])
    assert bucket.try_take() == 0.0
    assert bucket.try_take() == 0.0
    assert bucket.try_take() == pytest.approx(2.0)
    now[0] += 2.0
    assert bucket.try_take() == 0.0


def test_per_minute_budget():
    bucket = TokenBucket.per_minute(50)
    assert bucket.capacity == 5
    assert bucket.rate == pytest.approx(50 / 60)
    assert TokenBucket.per_minute(5).capacity == 1
