"""Bin-dependent weighting tables for PSCF, CWT, RTWC and QTBA fields.

A table is an ordered list of ``(low, high, weight)`` ranges. Lookup returns
the weight of the first range containing the key (bounds inclusive) and 1
when none does, so overlapping ranges resolve by table order.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Sequence

from pymetcor.core.models import ConfigParseError


@dataclass(frozen=True)
class WeightRange:
    """One ``(low, high, weight)`` entry. ``low <= high`` is not enforced."""

    low: float
    high: float
    weight: float

    def contains(self, key: float) -> bool:
        return self.low <= key <= self.high


class WeightTable:
    """Ordered weight ranges over a continuous key (e.g. transport potential)."""

    default_weight = 1.0

    def __init__(self, entries: Iterable[WeightRange | Sequence[float]] = ()) -> None:
        self.entries: list[WeightRange] = [
            e if isinstance(e, WeightRange) else self._coerce(*e) for e in entries
        ]

    @staticmethod
    def _coerce(low, high, weight) -> WeightRange:
        return WeightRange(float(low), float(high), float(weight))

    def __len__(self) -> int:
        return len(self.entries)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.entries!r})"

    def lookup(self, key: float) -> float:
        for entry in self.entries:
            if entry.contains(key):
                return entry.weight
        return self.default_weight

    # -- Construction helpers ------------------------------------------------

    @classmethod
    def from_string(cls, text: str) -> "WeightTable":
        """Parse one ``low high weight`` entry per non-blank line.

        Lines starting with ``#`` are ignored.

        Raises
        ------
        ConfigParseError
            If a line does not hold three numbers.
        """
        entries = []
        for lineno, raw in enumerate(text.splitlines(), start=1):
            line = raw.strip()
            if not line or line.startswith("#"):
                continue
            parts = line.replace(",", " ").split()
            if len(parts) != 3:
                raise ConfigParseError(
                    "Weight entry requires 3 fields",
                    line_number=lineno,
                    expected="LOW HIGH WEIGHT",
                )
            try:
                entries.append(cls._coerce(*parts))
            except ValueError:
                raise ConfigParseError(
                    f"Cannot parse weight entry '{line}'",
                    line_number=lineno,
                    expected="numeric LOW HIGH WEIGHT",
                )
        return cls(entries)

    @classmethod
    def from_file(cls, path: str | Path) -> "WeightTable":
        return cls.from_string(Path(path).read_text(encoding="utf-8"))


class IntegerWeightTable(WeightTable):
    """Weight ranges over integer keys such as cell populations."""

    @staticmethod
    def _coerce(low, high, weight) -> WeightRange:
        return WeightRange(int(float(low)), int(float(high)), float(weight))

    def lookup(self, key: int) -> float:
        return super().lookup(int(key))

    @classmethod
    def default_pscf(cls) -> "IntegerWeightTable":
        """The all-ones five-class table used when no weighting is configured."""
        return cls([WeightRange(1, 1, 1.0) for _ in range(5)])


ContinuousWeightTable = WeightTable
