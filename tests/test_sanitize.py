from __future__ import annotations

import pytest

from gdpr.core.privacy.models import ConsentTab
from gdpr.core.privacy.sanitize import (
    as_bool,
    consent_tabs_to_option,
    esc_url_raw,
    intval,
    kses_post,
    sanitize_consent_tabs,
    sanitize_text_field,
    sanitize_textarea_field,
)


def _analytics_tab():
    return {
        "name": "Analytics",
        "how_we_use": "<script>x</script>We track visits",
        "cookies_used": "_ga",
        "hosts": [{"name": "Google", "cookies_used": "_ga", "optout": "not a url"}],
    }


def test_script_stripped_and_bad_optout_neutralized():
    out = sanitize_consent_tabs({"analytics": _analytics_tab()})
    assert list(out) == ["analytics"]
    tab = out["analytics"]
    assert tab.name == "Analytics"
    assert tab.how_we_use == "We track visits"
    assert tab.cookies_used == "_ga"
    assert tab.always_active is False
    assert len(tab.hosts) == 1
    assert tab.hosts[0].name == "Google"
    assert tab.hosts[0].optout == ""


def test_tab_without_name_is_dropped():
    assert sanitize_consent_tabs({"t": {"name": "", "how_we_use": "text"}}) == {}


@pytest.mark.parametrize(
    "props",
    [
        {"name": "Ads"},
        {"name": "Ads", "how_we_use": "   "},
        {"name": "  ", "how_we_use": "text"},
        {"name": "<b></b>", "how_we_use": "text"},
        {"name": "Ads", "how_we_use": "<script>only script</script>"},
        {"name": "Ads", "how_we_use": "<p></p>"},
        {"name": "Ads", "how_we_use": "<p> <br /> </p>"},
        "not a mapping",
    ],
)
def test_incomplete_tabs_dropped(props):
    out = sanitize_consent_tabs({"keep": {"name": "Keep", "how_we_use": "ok"}, "drop": props})
    assert list(out) == ["keep"]


def test_host_missing_cookies_used_dropped_but_tab_kept():
    raw = {
        "marketing": {
            "name": "Marketing",
            "how_we_use": "Ads",
            "hosts": [
                {"name": "Ads Inc", "cookies_used": "", "optout": "https://ads.example.com/optout"},
                {"name": "", "cookies_used": "_x"},
                {"name": "Pixel", "cookies_used": "_px", "optout": "https://pixel.example.com/optout"},
            ],
        }
    }
    tab = sanitize_consent_tabs(raw)["marketing"]
    assert [h.name for h in tab.hosts] == ["Pixel"]
    assert tab.hosts[0].optout == "https://pixel.example.com/optout"


def test_hosts_given_as_mapping_become_ordered_list():
    raw = {"a": {"name": "A", "how_we_use": "x", "hosts": {"h2": {"name": "Two", "cookies_used": "c2"}, "h1": {"name": "One", "cookies_used": "c1"}}}}
    tab = sanitize_consent_tabs(raw)["a"]
    assert [h.name for h in tab.hosts] == ["Two", "One"]


def test_output_follows_input_order():
    raw = {k: {"name": k.upper(), "how_we_use": "x"} for k in ["zeta", "alpha", "mid"]}
    assert list(sanitize_consent_tabs(raw)) == ["zeta", "alpha", "mid"]


@pytest.mark.parametrize("value", [None, "junk", 42, ["a", "b"]])
def test_non_mapping_input_passes_through(value):
    assert sanitize_consent_tabs(value) is value


def test_always_active_coerced():
    out = sanitize_consent_tabs(
        {
            "a": {"name": "A", "how_we_use": "x", "always_active": "1"},
            "b": {"name": "B", "how_we_use": "x", "always_active": "0"},
            "c": {"name": "C", "how_we_use": "x", "always_active": True},
        }
    )
    assert [out[k].always_active for k in ["a", "b", "c"]] == [True, False, True]


def test_sanitize_is_idempotent():
    raw = {
        "analytics": _analytics_tab(),
        "rich": {
            "name": "  Rich &amp; <i>Styled</i>  ",
            "always_active": "on",
            "how_we_use": '<p onclick="evil()">We <strong>use</strong> <a href="https://example.com/p?a=1&b=2" target="_blank">cookies</a> &amp; more &lt;3</p><iframe src="x"></iframe>',
            "cookies_used": "<em>_sid</em>, _csrf",
            "hosts": [{"name": "CDN", "cookies_used": "__cf", "optout": "HTTPS://cdn.example.com/opt out"}],
        },
        "empty": {"name": "", "how_we_use": ""},
    }
    once = sanitize_consent_tabs(raw)
    twice = sanitize_consent_tabs(once)
    assert twice == once
    assert sanitize_consent_tabs(consent_tabs_to_option(once)) == once


def test_how_we_use_keeps_safe_subset():
    out = kses_post('<p onclick="x()">Hi <a href="javascript:alert(1)">there</a> <b>bold</b></p><img src="x" onerror="y">')
    assert out == "<p>Hi <a>there</a> <b>bold</b></p>"


def test_how_we_use_keeps_safe_link():
    out = kses_post('<a href="https://example.com/privacy" target="_blank" rel="noopener">policy</a>')
    assert out == '<a href="https://example.com/privacy" target="_blank" rel="noopener">policy</a>'


def test_plain_text_fields():
    assert sanitize_text_field("<b>Analytics</b>   cookies\n") == "Analytics cookies"
    assert sanitize_text_field("Tom &amp; Jerry") == "Tom & Jerry"
    assert sanitize_text_field("<style>p{}</style>ok") == "ok"
    assert sanitize_text_field(None) == ""
    assert sanitize_textarea_field("<i>line one</i>\r\n  line   two ") == "line one\nline two"


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("https://example.com/optout", "https://example.com/optout"),
        ("HTTP://Example.com/a?b=1#c", "http://Example.com/a?b=1#c"),
        ("mailto:privacy@example.com", "mailto:privacy@example.com"),
        ("not a url", ""),
        ("javascript:alert(1)", ""),
        ("data:text/html;base64,xx", ""),
        ("http://", ""),
        ("https://example.com:99999/", ""),
        ("//example.com/x", ""),
        ("", ""),
        (None, ""),
    ],
)
def test_esc_url_raw(raw, expected):
    assert esc_url_raw(raw) == expected


def test_scalar_coercions():
    assert intval("12abc") == 12
    assert intval("abc") == 0
    assert intval(" -3") == -3
    assert intval(7.9) == 7
    assert as_bool("yes") is True
    assert as_bool("") is False
    assert as_bool(0) is False


def test_option_form_roundtrips_into_models():
    tabs = sanitize_consent_tabs({"analytics": _analytics_tab()})
    stored = consent_tabs_to_option(tabs)
    assert stored["analytics"]["hosts"][0] == {"name": "Google", "cookies_used": "_ga", "optout": ""}
    assert ConsentTab.model_validate(stored["analytics"]) == tabs["analytics"]
