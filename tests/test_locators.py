from locators import DEFAULT_RULES, FallbackRule, fallback_locators, resolve, split_alternatives
from models import StepKind


def test_caller_alternatives_come_first_in_order():
    candidates = resolve("#search_button_homepage, .btn--primary", "click")
    assert candidates[:2] == ["#search_button_homepage", ".btn--primary"]
    assert candidates[2:] == ['button[type="submit"]']


def test_commas_inside_brackets_and_parens_do_not_split():
    assert split_alternatives('a[title="x, y"], :is(h1, h2), .c') == ['a[title="x, y"]', ":is(h1, h2)", ".c"]


def test_duplicate_alternatives_are_dropped():
    assert split_alternatives(".a, .b, .a") == [".a", ".b"]


def test_result_links_get_result_title_fallback():
    assert resolve(".result:nth-child(2) h2 a", StepKind.CLICK) == [".result:nth-child(2) h2 a", ".result__title a"]


def test_fill_keyword_match_ignores_quote_style():
    assert resolve("input[name='q']", "fill") == ["input[name='q']", 'input[type="text"]']


def test_extract_always_gets_snippet_fallback():
    assert resolve("article p", "extractText") == ["article p", ".result__snippet"]


def test_fallback_already_listed_is_not_repeated():
    assert resolve('.result__snippet, article', "extractText") == [".result__snippet", "article"]


def test_unrelated_click_gets_no_fallback():
    assert resolve("#login", "click") == ["#login"]


def test_fallbacks_are_capped():
    rules = (
        FallbackRule(kinds=("click",), keywords=(), locators=("a", "b", "c")),
        FallbackRule(kinds=(), keywords=(), locators=("d",)),
    )
    assert fallback_locators("#x", "click", rules) == ["a", "b"]
    assert fallback_locators("#x", "click", rules, max_fallbacks=5) == ["a", "b", "c", "d"]


def test_generic_rules_follow_specific_ones():
    rules = (
        FallbackRule(kinds=(), keywords=(), locators=("generic",)),
        FallbackRule(kinds=("click",), keywords=("btn",), locators=("specific",)),
    )
    assert fallback_locators("#btn", "click", rules) == ["specific", "generic"]


def test_resolve_is_idempotent():
    for locator, kind in [("#search_button_homepage", "click"), ("input[name='q']", "fill"), ("main p", "extractText")]:
        assert resolve(locator, kind) == resolve(locator, kind)
        assert resolve(locator, kind, DEFAULT_RULES) == resolve(locator, kind)


def test_candidate_list_never_exceeds_three():
    assert resolve('.result, [data-testid="result"], .web-result', "click") == [
        ".result",
        '[data-testid="result"]',
        ".result__title a",
    ]
    assert resolve("#a, #b, #c, #d", "click") == ["#a", "#b", "#c"]
    assert resolve("#a, #b, #c, #d", "extractText") == ["#a", "#b", ".result__snippet"]


def test_attempt_cap_is_adjustable():
    assert resolve("#search, #go", "click", max_attempts=2) == ["#search", 'button[type="submit"]']
    assert resolve("#search", "click", max_attempts=1) == ["#search"]
