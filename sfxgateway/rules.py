"""Wildcard rules that select span tags by service and operation name."""

from __future__ import annotations

import re
from dataclasses import dataclass, field


@dataclass(frozen=True)
class Glob:
    """A pattern in which only ``*`` is special; it matches any run of characters."""

    pattern: str
    _regex: re.Pattern = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        regex = ".*".join(re.escape(part) for part in self.pattern.split("*"))
        object.__setattr__(self, "_regex", re.compile(regex, re.DOTALL))

    def match(self, text: str) -> bool:
        """Return whether the whole of ``text`` matches the pattern."""
        return self._regex.fullmatch(text) is not None


@dataclass
class TagMatchRuleConfig:
    """Configuration of a rule; missing service or operation means ``*``."""

    service: str | None = None
    operation: str | None = None
    tags: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class Rule:
    """A compiled tag matching rule."""

    service: Glob
    operation: Glob
    tags: tuple[str, ...]

    def applies_to(self, service: str, operation: str) -> bool:
        return self.service.match(service) and self.operation.match(operation)


def get_glob(pattern: str) -> Glob:
    """Compile a pattern in which every character except ``*`` is literal."""
    return Glob(pattern)


def get_rules(rule_configs) -> list[Rule]:
    """Compile rule configurations, raising ValueError on missing or empty tags."""
    rules = []
    for config in rule_configs:
        service = "*" if config.service is None else config.service
        operation = "*" if config.operation is None else config.operation
        if not config.tags:
            raise ValueError(f"must include Tags for {service}:{operation}")
        if any(tag == "" for tag in config.tags):
            raise ValueError(f"found empty tag in {service}:{operation}")
        rules.append(Rule(get_glob(service), get_glob(operation), tuple(config.tags)))
    return rules