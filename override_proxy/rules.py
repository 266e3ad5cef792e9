
import inspect
import re
from collections.abc import Mapping
from dataclasses import dataclass, fields
from typing import Callable, Optional

from .errors import RuleConfigError

HTTP_METHODS = frozenset({
    'GET', 'POST', 'PUT', 'PATCH', 'DELETE', 'HEAD', 'OPTIONS', 'TRACE', 'CONNECT',
})
DEFAULT_METHODS = ('GET',)

# Python flag -> JavaScript-style suffix, used only for display
_FLAG_CHARS = ((re.IGNORECASE, 'i'), (re.MULTILINE, 'm'), (re.DOTALL, 's'), (re.VERBOSE, 'x'))


def pattern_label(pattern: re.Pattern) -> str:
    flags = ''.join(ch for flag, ch in _FLAG_CHARS if pattern.flags & flag)
    return f"/{pattern.pattern}/{flags}"


def request_path(request) -> str:
    # undecoded, so %0A or %2F never turn into path characters
    return request.rel_url.raw_path


@dataclass(frozen=True)
class ExactPath:
    """Raw request path equals a literal string (query string excluded)"""
    path: str

    def matches(self, request):
        return request_path(request) == self.path

    def __str__(self):
        return self.path


@dataclass(frozen=True)
class RegexPath:
    """Raw request path contains a match for a compiled pattern"""
    pattern: re.Pattern

    def matches(self, request):
        return self.pattern.search(request_path(request)) is not None

    def __str__(self):
        return pattern_label(self.pattern)


@dataclass(frozen=True)
class CustomTest:
    """User supplied predicate over the whole request"""
    test: Callable

    def matches(self, request):
        return self.test(request)

    def __str__(self):
        return getattr(self.test, '__name__', 'test')


@dataclass(frozen=True)
class Rule:
    """A single override: when `test` accepts a request, `handler` answers it.

    `test` already includes the enabled and method guards, so callers only
    ever need ``rule.test(request)``. It may return an awaitable when the
    custom predicate is a coroutine function.
    """
    methods: tuple
    test: Callable
    handler: Callable
    enabled: bool = True
    name: Optional[str] = None
    matcher: object = None
    takes_proceed: bool = True
    label: Optional[str] = None

    @property
    def path_label(self) -> Optional[str]:
        if self.label:
            return self.label
        if isinstance(self.matcher, (ExactPath, RegexPath)):
            return str(self.matcher)
        return None

    @property
    def display_name(self) -> Optional[str]:
        return self.name or self.path_label

    def invoke(self, request, response, proceed):
        if self.takes_proceed:
            return self.handler(request, response, proceed)
        return self.handler(request, response)


@dataclass
class RuleConfig:
    """Record form accepted by rule(). Provide `path` or `test`."""
    handler: Optional[Callable] = None
    path: object = None
    test: Optional[Callable] = None
    methods: object = None
    name: Optional[str] = None
    enabled: bool = True


def normalize_methods(methods, default=None) -> tuple:
    if isinstance(methods, str):
        methods = [methods]
    methods = list(methods or ())
    if not methods:
        if default is None:
            raise RuleConfigError("rule requires at least one HTTP method")
        methods = list(default)

    normalized = []
    for method in methods:
        if not isinstance(method, str):
            raise RuleConfigError(f"HTTP method must be a string, got {method!r}")
        token = method.strip().upper()
        if token not in HTTP_METHODS:
            raise RuleConfigError(f"unknown HTTP method {method!r}")
        if token not in normalized:
            normalized.append(token)
    return tuple(normalized)


def path_matcher(path):
    if isinstance(path, str):
        return ExactPath(path)
    if isinstance(path, re.Pattern):
        return RegexPath(path)
    raise RuleConfigError(f"path must be a string or compiled pattern, got {type(path).__name__}")


def _accepts_proceed(handler) -> bool:
    """True unless the handler can only take (request, response)"""
    try:
        params = inspect.signature(handler).parameters.values()
    except (TypeError, ValueError):
        return True
    positional = 0
    for param in params:
        if param.kind == param.VAR_POSITIONAL:
            return True
        if param.kind in (param.POSITIONAL_ONLY, param.POSITIONAL_OR_KEYWORD):
            positional += 1
    return positional >= 3


def _guarded(enabled, methods, matcher):
    allowed = frozenset(methods)

    def test(request):
        if not enabled:
            return False
        if (request.method or '').upper() not in allowed:
            return False
        return matcher.matches(request)

    return test


def _build(handler, matcher, methods, enabled, name, label=None):
    if not callable(handler):
        raise RuleConfigError("rule requires a callable handler")
    return Rule(
        methods=methods,
        test=_guarded(enabled, methods, matcher),
        handler=handler,
        enabled=enabled,
        name=name or None,
        matcher=matcher,
        takes_proceed=_accepts_proceed(handler),
        label=label,
    )


def _coerce_config(config) -> RuleConfig:
    if isinstance(config, RuleConfig):
        return config
    known = {f.name for f in fields(RuleConfig)}
    unknown = set(config) - known
    if unknown:
        raise RuleConfigError(f"unknown rule option(s): {', '.join(sorted(unknown))}")
    return RuleConfig(**config)


def from_config(config) -> Rule:
    """Build a rule from a RuleConfig or an equivalent mapping"""
    cfg = _coerce_config(config)
    if cfg.path is None and cfg.test is None:
        raise RuleConfigError("rule requires either path or test")
    if cfg.test is not None and not callable(cfg.test):
        raise RuleConfigError("rule test must be callable")

    methods = normalize_methods(cfg.methods, default=DEFAULT_METHODS)
    enabled = cfg.enabled is not False
    path = path_matcher(cfg.path) if cfg.path is not None else None
    matcher = CustomTest(cfg.test) if cfg.test is not None else path
    # when test drives matching the path only labels the rule
    label = str(path) if path is not None else None
    return _build(cfg.handler, matcher, methods, enabled, cfg.name, label)


def rule(method_or_config, path=None, handler=None, *, enabled=True, name=None) -> Rule:
    """Create an override rule.

    Two forms are accepted::

        rule('GET', '/__ping', handler)
        rule(['get', 'post'], re.compile(r'^/api/'), handler, enabled=False)
        rule({'path': '/__ping', 'handler': handler})
        rule(RuleConfig(test=lambda req: 'x-mock' in req.headers, handler=handler))

    The positional form names the rule after its path unless `name` is given.
    The record form defaults `methods` to GET and requires `path` or `test`.
    """
    if isinstance(method_or_config, (RuleConfig, Mapping)) and path is None and handler is None:
        return from_config(method_or_config)

    if path is None:
        raise RuleConfigError("rule requires a path")
    methods = normalize_methods(method_or_config)
    matcher = path_matcher(path)
    return _build(handler, matcher, methods, enabled is not False, name)
