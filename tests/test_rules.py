"""Tests for the rule builder and the predicates it compiles."""

import re

import pytest

from override_proxy.errors import RuleConfigError
from override_proxy.rules import CustomTest, ExactPath, RegexPath, Rule, RuleConfig, rule


def noop(request, response):
    response.json({})


class TestPositionalForm:
    def test_lowercase_method_matches_uppercase_request(self, make_request) -> None:
        r = rule("get", "/x", noop)
        assert r.methods == ("GET",)
        assert r.test(make_request("GET", "/x"))

    def test_method_list_is_normalized_and_deduplicated(self, make_request) -> None:
        r = rule(["post", "PUT", "Post"], "/items", noop)
        assert r.methods == ("POST", "PUT")
        assert r.test(make_request("PUT", "/items"))
        assert not r.test(make_request("GET", "/items"))

    def test_exact_path_ignores_query_string(self, make_request) -> None:
        r = rule("GET", "/search", noop)
        assert r.test(make_request("GET", "/search?q=pikachu"))
        assert not r.test(make_request("GET", "/search/more"))

    def test_regex_path(self, make_request) -> None:
        r = rule("GET", re.compile(r"^/api/users/(\d+)$"), noop)
        assert isinstance(r.matcher, RegexPath)
        assert r.test(make_request("GET", "/api/users/42"))
        assert not r.test(make_request("GET", "/api/users/abc"))

    def test_disabled_never_matches(self, make_request) -> None:
        r = rule("GET", "/x", noop, enabled=False)
        assert r.enabled is False
        assert not r.test(make_request("GET", "/x"))

    def test_display_name_defaults_to_path(self) -> None:
        assert rule("GET", "/x", noop).display_name == "/x"
        assert rule("GET", re.compile(r"^/a$", re.I), noop).display_name == "/^/a$/i"
        assert rule("GET", "/x", noop, name="Custom").display_name == "Custom"

    def test_empty_method_list_is_rejected(self) -> None:
        with pytest.raises(RuleConfigError):
            rule([], "/x", noop)

    def test_unknown_method_is_rejected(self) -> None:
        with pytest.raises(RuleConfigError):
            rule("FETCH", "/x", noop)

    def test_missing_handler_is_rejected(self) -> None:
        with pytest.raises(RuleConfigError, match="handler"):
            rule("GET", "/x", None)

    def test_bad_path_type_is_rejected(self) -> None:
        with pytest.raises(RuleConfigError, match="path"):
            rule("GET", 42, noop)


class TestRecordForm:
    def test_path_defaults_to_get_only(self, make_request) -> None:
        r = rule({"path": "/__ping", "handler": noop})
        assert r.methods == ("GET",)
        assert r.test(make_request("GET", "/__ping"))
        assert not r.test(make_request("POST", "/__ping"))

    def test_empty_methods_fall_back_to_get(self) -> None:
        assert rule({"path": "/a", "methods": [], "handler": noop}).methods == ("GET",)

    def test_regex_path_must_match_whole_anchored_pattern(self, make_request) -> None:
        r = rule(RuleConfig(path=re.compile(r"^/api/users/(\d+)$"), handler=noop))
        assert r.test(make_request("GET", "/api/users/42"))
        assert not r.test(make_request("GET", "/api/users/abc"))
        assert not r.test(make_request("GET", "/api/users/42/extra"))

    def test_paths_are_matched_undecoded(self, make_request) -> None:
        user = rule({"path": re.compile(r"^/api/users/(\d+)$"), "handler": noop})
        assert not user.test(make_request("GET", "/api/users/42%0A"))

        exact = rule("GET", "/a/b", noop)
        assert not exact.test(make_request("GET", "/a%2Fb"))
        assert rule("GET", "/a%2Fb", noop).test(make_request("GET", "/a%2Fb"))

    def test_custom_test_is_guarded_by_method_and_enabled(self, make_request) -> None:
        seen = []

        def has_mock_header(request):
            seen.append(request.path)
            return "X-Mock" in request.headers

        r = rule({"test": has_mock_header, "methods": ["post"], "handler": noop})
        assert isinstance(r.matcher, CustomTest)
        assert r.test(make_request("POST", "/any", headers={"X-Mock": "1"}))
        assert not r.test(make_request("POST", "/any"))
        # the method guard runs first, the custom test is never reached
        assert not r.test(make_request("GET", "/other", headers={"X-Mock": "1"}))
        assert seen == ["/any", "/any"]

        off = rule({"test": has_mock_header, "enabled": False, "handler": noop})
        assert not off.test(make_request("GET", "/any", headers={"X-Mock": "1"}))

    def test_test_wins_over_path_for_matching(self, make_request) -> None:
        r = rule({"path": "/labelled", "test": lambda req: req.path == "/real", "handler": noop})
        assert r.test(make_request("GET", "/real"))
        assert not r.test(make_request("GET", "/labelled"))
        assert r.display_name == "/labelled"

    def test_display_name(self) -> None:
        assert rule({"name": "Ping", "path": "/__ping", "handler": noop}).display_name == "Ping"
        assert rule({"path": "/__ping", "handler": noop}).display_name == "/__ping"
        assert rule({"test": lambda req: True, "handler": noop}).display_name is None

    def test_requires_path_or_test(self) -> None:
        with pytest.raises(RuleConfigError, match="either path or test"):
            rule({"handler": noop})

    def test_requires_handler(self) -> None:
        with pytest.raises(RuleConfigError, match="handler"):
            rule({"path": "/x"})

    def test_unknown_option_is_rejected(self) -> None:
        with pytest.raises(RuleConfigError, match="unknown rule option"):
            rule({"path": "/x", "handler": noop, "priority": 1})


class TestRuleValue:
    def test_rule_is_immutable(self) -> None:
        r = rule("GET", "/x", noop)
        with pytest.raises(AttributeError):
            r.enabled = False  # type: ignore[misc]

    def test_invoke_passes_proceed_only_to_handlers_that_take_it(self) -> None:
        calls = []

        def two(request, response):
            calls.append(("two", request, response))

        def three(request, response, proceed):
            calls.append(("three", request, response, proceed))

        assert rule("GET", "/a", two).takes_proceed is False
        assert rule("GET", "/a", three).takes_proceed is True

        rule("GET", "/a", two).invoke("req", "res", "next")
        rule("GET", "/a", three).invoke("req", "res", "next")
        assert calls == [("two", "req", "res"), ("three", "req", "res", "next")]

    def test_matcher_variants(self) -> None:
        assert isinstance(rule("GET", "/x", noop).matcher, ExactPath)
        assert isinstance(rule("GET", "/x", noop), Rule)
