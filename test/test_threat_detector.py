import pytest

from security.threat_detector import (
    RULESET_VERSION,
    SQL_INJECTION,
    SQL_INJECTION_RULES,
    XSS,
    XSS_RULES,
    ThreatDetector,
    ThreatPattern,
    sanitize_input,
)


detector = ThreatDetector()


@pytest.mark.parametrize("rule", SQL_INJECTION_RULES, ids=lambda r: r.name)
def test_every_sql_rule_flags_its_example(rule):
    assert rule.matches(rule.example)
    assert detector.scan(rule.example, SQL_INJECTION)


@pytest.mark.parametrize("rule", XSS_RULES, ids=lambda r: r.name)
def test_every_xss_rule_flags_its_example(rule):
    assert rule.matches(rule.example)
    assert detector.scan(rule.example, XSS)


@pytest.mark.parametrize("text", [
    "Grandma's Lasagna",
    "2 cups flour",
    "Stir for 5 minutes, then let it rest.",
    "Chicken & Rice (one-pot)",
    "",
])
def test_benign_text_passes_both_categories(text):
    assert not detector.scan(text, SQL_INJECTION)
    assert not detector.scan(text, XSS)


def test_matching_is_case_insensitive():
    assert detector.scan("<ScRiPt>alert(1)</sCrIpT>", XSS)
    assert detector.scan("uNiOn SeLeCt 1", SQL_INJECTION)


def test_first_match_returns_earliest_rule_in_table_order():
    # union-select와 select-from 모두 매칭되지만 union-select가 먼저
    rule = detector.first_match("1 UNION SELECT name FROM users", SQL_INJECTION)
    assert rule.name == "union-select"


def test_first_match_without_category_checks_sql_before_xss():
    rule = detector.first_match("x' or 'a'='a' <script>")
    assert rule.category == SQL_INJECTION


def test_known_false_positive_is_still_flagged():
    assert detector.scan("Drop Table Tiramisu", SQL_INJECTION)


def test_categories_are_independent():
    assert not detector.scan("<iframe src=x>", SQL_INJECTION)
    assert not detector.scan("DELETE FROM recipes", XSS)


def test_custom_rule_set_can_be_injected():
    custom = ThreatDetector({SQL_INJECTION: [ThreatPattern("truncate", SQL_INJECTION, r"\btruncate\b", "TRUNCATE t")]})
    assert custom.scan("truncate recipes", SQL_INJECTION)
    assert not custom.scan("DROP TABLE recipes", SQL_INJECTION)
    with pytest.raises(KeyError):
        custom.scan("x", XSS)


def test_ruleset_version_is_declared():
    assert RULESET_VERSION


def test_sanitize_input_strips_null_bytes_and_escapes_html():
    assert sanitize_input("  <b>Pie</b>\x00 ") == "&lt;b&gt;Pie&lt;/b&gt;"
