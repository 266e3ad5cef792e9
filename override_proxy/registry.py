from dataclasses import dataclass
from typing import Optional

from .rules import Rule


@dataclass(frozen=True)
class Provenance:
    """Where a rule came from: rule file relative path plus optional binding key"""
    file: str
    binding: Optional[str] = None

    @property
    def id(self) -> str:
        return f"{self.file}:{self.binding}" if self.binding else self.file


@dataclass(frozen=True)
class RegisteredRule:
    rule: Rule
    provenance: Optional[Provenance] = None

    @property
    def display_name(self) -> Optional[str]:
        # explicit name, then binding key, then the path it matches
        if self.rule.name:
            return self.rule.name
        if self.provenance and self.provenance.binding:
            return self.provenance.binding
        return self.rule.path_label

    @property
    def source(self) -> str:
        return self.provenance.id if self.provenance else '?'


class Registry:
    """Ordered, read-only collection of override rules.

    Order decides which rule wins when several match the same request, so it
    is kept exactly as given. Reloading builds a new Registry instead of
    editing this one.
    """

    def __init__(self, entries=()):
        items = []
        for entry in entries:
            if isinstance(entry, Rule):
                entry = RegisteredRule(entry)
            if not isinstance(entry, RegisteredRule):
                raise TypeError(f"Registry accepts Rule or RegisteredRule, got {type(entry).__name__}")
            items.append(entry)
        self._entries = tuple(items)

    @classmethod
    def from_rules(cls, rules, file=None):
        """Wrap plain rules, tagging them all with one source file"""
        provenance = Provenance(file) if file else None
        return cls(RegisteredRule(r, provenance) for r in rules)

    def __iter__(self):
        return iter(self._entries)

    def __len__(self):
        return len(self._entries)

    def __getitem__(self, index):
        return self._entries[index]

    def __bool__(self):
        return bool(self._entries)

    def describe(self) -> list:
        """One line per rule for the startup banner"""
        lines = []
        for entry in self._entries:
            off = '' if entry.rule.enabled else ' (off)'
            lines.append(f"  - {entry.display_name or '<unnamed>'}{off} :: {entry.source}")
        return lines
