"""Resolved source table.

Condition sources are written as strings ("Close", "indicator_rsi1",
"indicator_macd1.signal", or a bare indicator id). They are resolved once,
when a strategy is compiled, into entries of a `SourceTable`; conditions then
refer to sources by index and nothing is re-parsed per candle.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from ..indicators.provider import default_output, output_fields
from ..models.strategy import Indicator

INDICATOR_PREFIX = "indicator_"

# Raw price fields, keyed by their lowercase spelling
PRICE_FIELDS: dict[str, str] = {
    "open": "open",
    "high": "high",
    "low": "low",
    "close": "close",
    "price": "close",
}


class SourceKind(str, Enum):
    PRICE = "price"
    INDICATOR = "indicator"


@dataclass(frozen=True)
class ResolvedSource:
    """One distinct per-candle value series a condition can read."""

    key: str  # Canonical reference, e.g. "close" or "indicator_macd1.signal"
    kind: SourceKind
    field: str  # Price field or indicator output name
    indicator_id: str | None = None


class SourceResolutionError(ValueError):
    """A source reference could not be resolved."""


@dataclass
class SourceTable:
    """Arena of resolved sources. Equal references share one index."""

    indicators: dict[str, Indicator]
    sources: list[ResolvedSource] = field(default_factory=list)
    _index: dict[str, int] = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self.sources)

    def __getitem__(self, index: int) -> ResolvedSource:
        return self.sources[index]

    def resolve(self, ref: str) -> int:
        """Resolve a source reference to its table index, adding it if new.

        Raises:
            SourceResolutionError: Undeclared indicator or unknown subfield
        """
        source = self._parse(ref)
        if source.key not in self._index:
            self._index[source.key] = len(self.sources)
            self.sources.append(source)
        return self._index[source.key]

    def _parse(self, ref: str) -> ResolvedSource:
        text = ref.strip()
        if not text:
            raise SourceResolutionError("Empty source reference")

        price_field = PRICE_FIELDS.get(text.lower())
        if price_field is not None:
            return ResolvedSource(key=price_field, kind=SourceKind.PRICE, field=price_field)

        body = text[len(INDICATOR_PREFIX) :] if text.startswith(INDICATOR_PREFIX) else text
        indicator_id, _, subfield = body.partition(".")
        indicator = self.indicators.get(indicator_id)
        if indicator is None:
            # A declared id may itself start with the prefix
            indicator = self.indicators.get(text.partition(".")[0])
            if indicator is None:
                raise SourceResolutionError(f"Undeclared indicator in source '{ref}'")
            indicator_id = indicator.id

        fields = output_fields(indicator.type)
        name = subfield.lower() if subfield else default_output(indicator.type)
        if name not in fields:
            raise SourceResolutionError(
                f"Unknown subfield '{subfield}' for {indicator.type.value} indicator "
                f"'{indicator_id}' (expected one of: {', '.join(fields)})"
            )
        return ResolvedSource(
            key=f"{INDICATOR_PREFIX}{indicator_id}.{name}",
            kind=SourceKind.INDICATOR,
            field=name,
            indicator_id=indicator_id,
        )
