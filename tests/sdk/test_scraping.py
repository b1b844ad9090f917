"""Tests for login page HTML extraction."""

import re

from trainingpeaks_mcp.sdk.scraping import LoginPageScraper, extract_csrf_token, extract_error_message


class TestCsrfToken:
    def test_extracts_value(self):
        assert extract_csrf_token('<input name="__RequestVerificationToken" value="abc123">') == "abc123"

    def test_value_before_name(self):
        page = '<input type="hidden" value="xyz" name="__RequestVerificationToken" />'
        assert extract_csrf_token(page) == "xyz"

    def test_attributes_between(self):
        page = '<input name="__RequestVerificationToken" type="hidden" value="t-1">'
        assert extract_csrf_token(page) == "t-1"

    def test_unescapes_entities(self):
        page = '<input name="__RequestVerificationToken" value="a&amp;b">'
        assert extract_csrf_token(page) == "a&b"

    def test_missing_or_empty(self):
        assert extract_csrf_token("<form></form>") is None
        assert extract_csrf_token('<input name="__RequestVerificationToken" value="">') is None
        assert extract_csrf_token(None) is None
        assert extract_csrf_token({"json": True}) is None


class TestErrorMessage:
    def test_invalid_credentials_marker(self):
        page = '<p data-cy="invalid_credentials_message">Invalid username or password</p>'
        assert extract_error_message(page) == "Invalid username or password"

    def test_error_div(self):
        page = '<div class="field-error big">  Account locked </div>'
        assert extract_error_message(page) == "Account locked"

    def test_error_span(self):
        assert extract_error_message('<span class="error">Bad</span>') == "Bad"

    def test_alert_danger(self):
        assert extract_error_message('<div class="alert alert-danger">Denied</div>') == "Denied"

    def test_no_error(self):
        assert extract_error_message("<div class='ok'>Welcome</div>") is None


def test_custom_patterns():
    scraper = LoginPageScraper(
        csrf_patterns=(re.compile(r'data-csrf="([^"]+)"'),),
        error_patterns=(re.compile(r"<em>([^<]+)</em>"),),
    )
    assert scraper.csrf_token('<meta data-csrf="m1">') == "m1"
    assert scraper.error_message("<em>nope</em>") == "nope"
