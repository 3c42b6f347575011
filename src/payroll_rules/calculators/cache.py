"""Shared cache of parsed formula expressions."""

from __future__ import annotations

from typing import TYPE_CHECKING

from payroll_rules.calculators.expression import Expression, ExpressionParser

if TYPE_CHECKING:
    from payroll_rules.config import Settings


class ExpressionCache:
    """Parse-once cache of formula ASTs, owned by the caller (e.g. a payroll run).

    Readers never lock. A miss parses outside any lock and publishes with
    `dict.setdefault`, so concurrent misses on the same text may parse twice
    but every reader ends up with the same published `Expression`.
    """

    def __init__(self, parser: ExpressionParser | None = None):
        self.parser = parser or ExpressionParser()
        self._entries: dict[str, Expression] = {}

    @classmethod
    def from_settings(cls, settings: Settings) -> ExpressionCache:
        return cls(ExpressionParser.from_settings(settings))

    def get(self, expression: str) -> Expression:
        """Return the parsed expression, parsing on first use.

        Raises:
            ParseError: if the text is not a valid formula (nothing is cached)
        """
        cached = self._entries.get(expression)
        if cached is not None:
            return cached
        parsed = self.parser.parse(expression)
        return self._entries.setdefault(expression, parsed)

    def __contains__(self, expression: object) -> bool:
        return expression in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def clear(self) -> None:
        self._entries.clear()
