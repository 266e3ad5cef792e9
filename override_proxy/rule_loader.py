import importlib.util
import logging
import re
import sys
from collections.abc import Mapping
from pathlib import Path

from .registry import Provenance, RegisteredRule, Registry
from .rules import Rule

logger = logging.getLogger("RuleLoader")

# every rule file exposes its overrides under this module attribute
BINDING = 'rules'
MODULE_PREFIX = 'override_rules'


class RuleLoader:
    """Discover rule files in a directory and collect the rules they declare.

    A rule file is any ``*.py`` under the directory, except dotfiles, files in
    dot-directories, ``__init__.py`` and ``__pycache__``. Each file sets a
    module-level ``rules``, which may be:

    - a single Rule
    - a list or tuple of Rules
    - a dict mapping a binding name to a Rule or list of Rules

    Files load in sorted path order. A file that fails to import is logged
    and skipped; the others still load.
    """

    def __init__(self, rules_dir='rules'):
        self.rules_dir = Path(rules_dir)
        self.failed = []

    def discover(self) -> list:
        self.rules_dir.mkdir(parents=True, exist_ok=True)
        found = []
        for path in self.rules_dir.rglob('*.py'):
            rel = path.relative_to(self.rules_dir)
            if any(part.startswith('.') for part in rel.parts):
                continue
            if '__pycache__' in rel.parts or path.name == '__init__.py':
                continue
            found.append(path)
        return sorted(found, key=lambda p: p.relative_to(self.rules_dir).as_posix())

    def load(self) -> Registry:
        self.failed = []
        entries = []
        for path in self.discover():
            rel = path.relative_to(self.rules_dir).as_posix()
            try:
                entries.extend(self.load_source(path))
            except Exception as e:
                self.failed.append(rel)
                logger.warning("Failed loading rule module %s: %s", rel, e)
        logger.debug("Loaded %d rule(s) from %s", len(entries), self.rules_dir)
        return Registry(entries)

    def load_source(self, path) -> list:
        path = Path(path)
        rel = path.relative_to(self.rules_dir).as_posix()
        module = self._import(path, rel)

        if not hasattr(module, BINDING):
            logger.warning("Rule module %s defines no `%s`, skipping", rel, BINDING)
            return []
        return [
            RegisteredRule(rule_, Provenance(rel, binding))
            for binding, rule_ in self._collect(getattr(module, BINDING), rel)
        ]

    def _collect(self, value, rel, binding=None):
        if isinstance(value, Rule):
            yield binding, value
        elif isinstance(value, Mapping) and binding is None:
            for key, item in value.items():
                yield from self._collect(item, rel, str(key))
        elif isinstance(value, (list, tuple)):
            for item in value:
                if isinstance(item, Rule):
                    yield binding, item
                else:
                    logger.warning("Ignoring non-rule %r in %s", item, rel)
        else:
            logger.warning("Ignoring non-rule %r in %s", value, rel)

    def _import(self, path, rel):
        name = MODULE_PREFIX + '.' + re.sub(r'\W', '_', rel[:-3])
        spec = importlib.util.spec_from_file_location(name, path)
        if spec is None or spec.loader is None:
            raise ImportError(f"cannot load {rel}")
        module = importlib.util.module_from_spec(spec)
        sys.modules[name] = module
        try:
            spec.loader.exec_module(module)
        except BaseException:
            sys.modules.pop(name, None)
            raise
        return module
