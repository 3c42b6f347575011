"""Tests for the shared expression cache."""

from concurrent.futures import ThreadPoolExecutor

import pytest

from payroll_rules.calculators.cache import ExpressionCache
from payroll_rules.calculators.errors import ParseError
from payroll_rules.calculators.expression import ExpressionParser
from payroll_rules.config import Settings


class TestExpressionCache:
    """Test parse-once caching."""

    def test_same_object_returned(self):
        """Test that a formula is parsed once and then reused."""
        cache = ExpressionCache()
        first = cache.get("basic * 2")
        assert cache.get("basic * 2") is first
        assert len(cache) == 1

    def test_parse_error_not_cached(self):
        """Test that invalid text raises every time and is not stored."""
        cache = ExpressionCache()
        for _ in range(2):
            with pytest.raises(ParseError):
                cache.get("basic *")
        assert "basic *" not in cache

    def test_uses_configured_parser(self):
        """Test that cache parsing honours parser bounds."""
        cache = ExpressionCache.from_settings(Settings(formula_max_depth=1))
        with pytest.raises(ParseError):
            cache.get("((1))")
        assert ExpressionCache(ExpressionParser(max_depth=2)).get("((1))") is not None

    def test_concurrent_readers_share_entry(self):
        """Test that concurrent misses all end with the published expression."""
        cache = ExpressionCache()
        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(lambda _: cache.get("MAX(a, b) + 1"), range(64)))

        assert all(r is results[0] for r in results)
        assert cache.get("MAX(a, b) + 1") is results[0]
        assert len(cache) == 1

    def test_clear(self):
        """Test emptying the cache."""
        cache = ExpressionCache()
        cache.get("1 + 1")
        cache.clear()
        assert len(cache) == 0
