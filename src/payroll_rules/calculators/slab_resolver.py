"""Bracket lookup for slab-based rules (e.g. state Professional Tax)."""

from __future__ import annotations

from bisect import bisect_left
from decimal import Decimal

from payroll_rules.calculators.errors import NoMatchingSlabError
from payroll_rules.calculators.rules import Slab, SlabConfig


class SlabResolver:
    """Resolves slab tables.

    Slabs are validated as strictly ascending when the rule is built, so
    lookup is a binary search over the bounded `upto_amount` values: the
    first slab with `upto_amount >= value` applies; an input above every
    bound falls into the trailing unbounded slab if there is one.
    """

    def find_slab(self, config: SlabConfig, value: Decimal) -> Slab:
        """Find the slab covering a value.

        Raises:
            NoMatchingSlabError: if the value exceeds every bound and the
                table has no unbounded slab
        """
        slabs = config.slabs
        bounded = [s.upto_amount for s in slabs if s.upto_amount is not None]

        index = bisect_left(bounded, value)
        if index < len(bounded):
            return slabs[index]
        if slabs[-1].is_unbounded:
            return slabs[-1]
        raise NoMatchingSlabError(value, bounded[-1])

    def resolve(self, config: SlabConfig, value: Decimal) -> tuple[Decimal, Slab]:
        """Compute the slab amount for a value: flat, or a percentage of the value."""
        slab = self.find_slab(config, value)
        if slab.is_percentage:
            return value * slab.value / 100, slab
        return slab.value, slab

    @staticmethod
    def describe(slab: Slab) -> str:
        bound = "with no upper bound" if slab.upto_amount is None else f"up to {slab.upto_amount}"
        value = f"{slab.value}%" if slab.is_percentage else f"{slab.value}"
        return f"slab {bound}: {value}"
