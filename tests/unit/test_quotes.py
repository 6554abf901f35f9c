"""Tests for provider payload parsing and the HTTP providers."""

import pytest

from portfolio_refresh.quotes.google import GoogleFinanceProvider, parse_quote_page
from portfolio_refresh.quotes.nse import NSE_HOME_URL, NSEProvider, parse_quote_equity
from portfolio_refresh.quotes.parsing import (
    dig,
    extract_latest_earnings,
    extract_pe_ratio,
    sane_pe_ratio,
    sane_price,
    to_finite_number,
)
from portfolio_refresh.quotes.symbols import google_symbol, normalize_symbol, yahoo_symbol
from portfolio_refresh.quotes.yahoo import YahooChartProvider, parse_chart
from portfolio_refresh.utils.errors import SourceDataMissingError, SourceUnavailableError
from tests.fixtures.stubs import FakeResponse, FakeSession


NSE_PAYLOAD = {
    "info": {"symbol": "TCS"},
    "metadata": {"pdSectorPe": 29.87},
    "priceInfo": {"lastPrice": 3812.45, "previousClose": 3790.1},
}

YAHOO_PAYLOAD = {
    "chart": {
        "result": [{"meta": {"symbol": "TCS.NS", "regularMarketPrice": 3811.0, "previousClose": 3790.0}}],
        "error": None,
    }
}


class TestSymbols:
    def test_normalize_strips_exchange_suffix(self):
        assert normalize_symbol(" tcs.ns ") == "TCS"
        assert normalize_symbol("RELIANCE.BO") == "RELIANCE"
        assert normalize_symbol("INFY") == "INFY"

    def test_provider_symbols(self):
        assert yahoo_symbol("TCS") == "TCS.NS"
        assert yahoo_symbol("TCS", "BSE") == "TCS.BO"
        assert google_symbol("tcs.ns") == "TCS:NSE"
        assert google_symbol("TCS", "BSE") == "TCS:BOM"

    def test_unknown_exchange_defaults_to_nse(self):
        assert yahoo_symbol("TCS", "LSE") == "TCS.NS"


class TestValueParsing:
    @pytest.mark.parametrize("raw, expected", [
        (12.5, 12.5),
        ("1,234.50", 1234.5),
        ("N/A", None),
        ("", None),
        (None, None),
        (True, None),
        (float("nan"), None),
        ("abc", None),
    ])
    def test_to_finite_number(self, raw, expected):
        assert to_finite_number(raw) == expected

    def test_pe_ratio_bounds(self):
        assert sane_pe_ratio(25) == 25.0
        assert sane_pe_ratio(0) is None
        assert sane_pe_ratio(-3) is None
        assert sane_pe_ratio(1e7) is None

    @pytest.mark.parametrize("raw, expected", [
        (3500, 3500.0),
        ("3,812.45", 3812.45),
        (0, None),
        ("0.00", None),
        (-5, None),
        (float("inf"), None),
        (1e8, None),
    ])
    def test_price_bounds(self, raw, expected):
        assert sane_price(raw) == expected

    def test_dig(self):
        assert dig(YAHOO_PAYLOAD, "chart", "result", 0, "meta", "symbol") == "TCS.NS"
        assert dig(YAHOO_PAYLOAD, "chart", "result", 3, "meta") is None
        assert dig({"chart": "oops"}, "chart", "result") is None


class TestHtmlExtraction:
    def test_pe_from_embedded_json(self):
        assert extract_pe_ratio('<script>{"trailingPe": 31.2}</script>') == 31.2

    def test_pe_from_label(self):
        html = '<div class="x">P/E ratio</div><div class="P6K39c">28.45</div>'
        assert extract_pe_ratio(html) == 28.45

    def test_first_sane_pattern_wins(self):
        html = '{"trailingPe": 0} {"peRatio": 18.3}'
        assert extract_pe_ratio(html) == 18.3

    def test_no_pe(self):
        assert extract_pe_ratio("<html>nothing here</html>") is None

    def test_earnings_from_json(self):
        assert extract_latest_earnings('{"earningsDate": "2024-01-11"}') == "2024-01-11"

    def test_earnings_near_keyword(self):
        html = "<span>Earnings date</span><div>Jan 11, 2024</div>"
        assert extract_latest_earnings(html) == "Jan 11, 2024"

    def test_earnings_too_far_from_keyword(self):
        html = "Earnings" + ("x" * 500) + "Jan 11, 2024"
        assert extract_latest_earnings(html) is None

    def test_quote_page(self):
        html = '<div>P/E ratio</div><div>30.10</div><div>EPS</div><div>12 Oct 2023</div>'
        result = parse_quote_page(html)

        assert result.pe_ratio == 30.1
        assert result.latest_earnings == "12 Oct 2023"
        assert result.cmp is None


class TestPayloadMapping:
    def test_nse_quote_equity(self):
        result = parse_quote_equity(NSE_PAYLOAD)

        assert result.cmp == 3812.45
        assert result.previous_close == 3790.1
        assert result.pe_ratio == 29.87
        assert result.latest_earnings is None

    def test_nse_insane_pe_dropped(self):
        payload = {"priceInfo": {"lastPrice": 10}, "metadata": {"pdSectorPe": "-"}}
        assert parse_quote_equity(payload).pe_ratio is None

    def test_yahoo_chart(self):
        result = parse_chart(YAHOO_PAYLOAD)

        assert result.cmp == 3811.0
        assert result.previous_close == 3790.0

    def test_yahoo_falls_back_to_previous_close(self):
        payload = {"chart": {"result": [{"meta": {"previousClose": 3790.0}}]}}
        assert parse_chart(payload).cmp == 3790.0

    def test_yahoo_empty_result(self):
        assert parse_chart({"chart": {"result": None}}).is_empty()

    def test_nse_zero_or_negative_price_is_absent(self):
        provider = NSEProvider()

        negative = parse_quote_equity({"priceInfo": {"lastPrice": -5}})
        zero = parse_quote_equity({"priceInfo": {"lastPrice": 0, "previousClose": 0}})

        assert negative.cmp is None
        assert zero.cmp is None and zero.previous_close is None
        assert not provider.has_data(negative)
        assert not provider.has_data(zero)

    def test_yahoo_zero_price_is_absent(self):
        payload = {"chart": {"result": [{"meta": {"regularMarketPrice": 0, "previousClose": 0}}]}}
        assert parse_chart(payload).cmp is None

    def test_yahoo_non_finite_price_falls_back_to_previous_close(self):
        payload = {"chart": {"result": [{"meta": {"regularMarketPrice": float("inf"), "previousClose": 3790.0}}]}}
        assert parse_chart(payload).cmp == 3790.0

    @pytest.mark.parametrize("meta", ["oops", [1, 2], 42])
    def test_yahoo_meta_not_an_object(self, meta):
        assert parse_chart({"chart": {"result": [{"meta": meta}]}}).is_empty()


class TestNSEProvider:
    @pytest.mark.asyncio
    async def test_warms_cookies_before_api_call(self):
        session = FakeSession({
            "https://www.nseindia.com/api/quote-equity": FakeResponse(200, NSE_PAYLOAD),
            "https://www.nseindia.com/get-quotes/equity": FakeResponse(200, "<html></html>"),
            NSE_HOME_URL: FakeResponse(200, "<html></html>"),
        })
        provider = NSEProvider(warmup_delay=0, quote_page_delay=0, session_factory=lambda: session)

        result = await provider.fetch("tcs.ns", "NSE")

        assert result.cmp == 3812.45
        urls = [url for url, _ in session.requests]
        assert urls[0] == NSE_HOME_URL
        assert urls[1].endswith("get-quotes/equity?symbol=TCS")
        assert urls[2].endswith("api/quote-equity?symbol=TCS")
        assert session.requests[2][1]["Referer"] == urls[1]
        assert session.closed

    @pytest.mark.asyncio
    async def test_rejected_warmup_is_unavailable(self):
        session = FakeSession({NSE_HOME_URL: FakeResponse(403, "denied")})
        provider = NSEProvider(warmup_delay=0, quote_page_delay=0, session_factory=lambda: session)

        with pytest.raises(SourceUnavailableError) as exc_info:
            await provider.fetch("TCS", "NSE")
        assert exc_info.value.status == 403

    @pytest.mark.asyncio
    async def test_missing_price_is_data_missing(self):
        session = FakeSession({
            "https://www.nseindia.com/api/quote-equity": FakeResponse(200, {"priceInfo": {}}),
            NSE_HOME_URL: FakeResponse(200, ""),
        })
        provider = NSEProvider(warmup_delay=0, quote_page_delay=0, session_factory=lambda: session)

        with pytest.raises(SourceDataMissingError):
            await provider.fetch("TCS", "NSE")

    @pytest.mark.asyncio
    async def test_zero_price_is_data_missing(self):
        session = FakeSession({
            "https://www.nseindia.com/api/quote-equity": FakeResponse(200, {"priceInfo": {"lastPrice": 0}}),
            NSE_HOME_URL: FakeResponse(200, ""),
        })
        provider = NSEProvider(warmup_delay=0, quote_page_delay=0, session_factory=lambda: session)

        with pytest.raises(SourceDataMissingError):
            await provider.fetch("TCS", "NSE")

    def test_price_or_previous_close_counts_as_data(self):
        provider = NSEProvider()
        assert provider.has_data(parse_quote_equity({"priceInfo": {"previousClose": 1.0}}))
        assert not provider.has_data(parse_quote_equity({"metadata": {"pdSectorPe": 10}}))


class TestYahooProvider:
    @pytest.mark.asyncio
    async def test_fetch(self):
        session = FakeSession({"https://query1.finance.yahoo.com/v8/finance/chart/TCS.NS": FakeResponse(200, YAHOO_PAYLOAD)})
        provider = YahooChartProvider(session)

        result = await provider.fetch("TCS", "NSE")

        assert result.cmp == 3811.0
        assert provider.provider_symbol("TCS", "NSE") == "TCS.NS"

    @pytest.mark.asyncio
    async def test_undecodable_body(self):
        session = FakeSession({"https://query1.finance.yahoo.com": FakeResponse(200, "<html>")})

        with pytest.raises(SourceDataMissingError):
            await YahooChartProvider(session).fetch("TCS", "NSE")

    @pytest.mark.asyncio
    async def test_http_error(self):
        session = FakeSession({"https://query1.finance.yahoo.com": FakeResponse(429, "")})

        with pytest.raises(SourceUnavailableError) as exc_info:
            await YahooChartProvider(session).fetch("TCS", "NSE")

        context = exc_info.value.to_dict()["context"]
        assert context["operation"] == "fetch_quote_yahoo"
        assert context["symbol"] == "TCS.NS"
        assert context["metadata"]["url"].endswith("/chart/TCS.NS")


class TestGoogleProvider:
    @pytest.mark.asyncio
    async def test_fetch(self):
        html = '<div>P/E ratio</div><div>30.10</div>'
        session = FakeSession({"https://www.google.com/finance/quote/TCS:NSE": FakeResponse(200, html)})
        provider = GoogleFinanceProvider(session)

        result = await provider.fetch("TCS", "NSE")

        assert result.pe_ratio == 30.1
        assert provider.provider_symbol("TCS.NS", "NSE") == "TCS"

    @pytest.mark.asyncio
    async def test_page_without_fundamentals(self):
        session = FakeSession({"https://www.google.com/finance/quote/": FakeResponse(200, "<html></html>")})

        with pytest.raises(SourceDataMissingError):
            await GoogleFinanceProvider(session).fetch("TCS", "NSE")
