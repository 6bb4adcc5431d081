"""Unit tests for security/useragent.py -- User-Agent header to ClientInfo."""

import pytest

from security.useragent import ClientInfo, parse_client

CHROME_WINDOWS = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)
SAFARI_IPHONE = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.0 Mobile/15E148 Safari/604.1"
)
SAFARI_IPAD = (
    "Mozilla/5.0 (iPad; CPU OS 16_6 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/16.6 Mobile/15E148 Safari/604.1"
)
GOOGLEBOT = "Mozilla/5.0 (compatible; Googlebot/2.1; +http://www.google.com/bot.html)"


class TestParseClient:
    def test_desktop_chrome(self):
        info = parse_client(CHROME_WINDOWS)
        assert info.browser.startswith("Chrome 120")
        assert info.os == "Windows 10"
        assert info.device == "desktop"

    def test_iphone(self):
        info = parse_client(SAFARI_IPHONE)
        assert info.browser.startswith("Mobile Safari")
        assert info.os.startswith("iOS 17")
        assert info.device == "mobile"

    def test_ipad(self):
        assert parse_client(SAFARI_IPAD).device == "tablet"

    def test_bot(self):
        assert parse_client(GOOGLEBOT).device == "bot"

    @pytest.mark.parametrize("header", [None, "", "   "])
    def test_missing_header(self, header):
        assert parse_client(header) == ClientInfo()

    def test_garbage_leaves_browser_unknown(self):
        info = parse_client("definitely not a browser")
        assert info.browser is None
        assert info.os is None
