"""
Composite-key index over (model variant, opening type).

Support and rebate tables are keyed by a model code and a free-text opening
type label. CompositeKeyIndex turns those rows into a lookup map that every
pricing calculation shares, so that the precedence rules below are applied
in exactly one place:

- Explicit rows win over blanket ("전유형") rows, regardless of row order.
- A known non-zero value is never regressed to zero by a later row.
- Blanket rows only fill genuine gaps, and never a type that an explicit row
  of the same model (in any spelling) already covers.
- Port-in rows populate only the port-in key. They never write a synonym key
  that another opening type could later read.
- Combined rows ("010신규/기변") populate new line, device change, the
  combined key and their literal label.
"""

from collections import OrderedDict
from dataclasses import dataclass
from typing import (
    Dict,
    Iterable,
    Iterator,
    List,
    Optional,
    Set,
    Tuple,
    Union,
)

from subsidy_hub.utils.log_throttle import LogThrottle
from subsidy_hub.utils.logging import get_logger

from .normalizer import normalize, variant_chain
from .opening_type import (
    CONCRETE_ORDER,
    OpeningType,
    classify,
    coerce_opening_type,
    is_all_types,
    is_combined,
)

logger = get_logger(__name__)

DEFAULT_MISS_COOLDOWN_SECONDS = 300.0

TypeKey = Union[OpeningType, str]
IndexKey = Tuple[str, TypeKey]


@dataclass(frozen=True)
class IndexRow:
    """One source row feeding a CompositeKeyIndex."""

    model: str
    opening_type_label: str
    value: float


@dataclass(frozen=True)
class _ClassifiedRow:
    model: str
    label: str
    value: float
    types: frozenset
    blanket: bool

    @property
    def is_port_in(self) -> bool:
        return not self.blanket and OpeningType.PORT_IN in self.types

    @property
    def is_combined(self) -> bool:
        return not self.blanket and is_combined(self.types)


def _type_keys(row: _ClassifiedRow) -> List[TypeKey]:
    """Keys written by an explicit row, in deterministic order."""
    keys: List[TypeKey] = [t for t in CONCRETE_ORDER if t in row.types]
    if row.is_combined:
        keys.append(OpeningType.COMBINED)
        # Port-in rows never claim a literal synonym slot
        if OpeningType.PORT_IN not in row.types and row.label:
            keys.append(row.label)
    return keys


class CompositeKeyIndex:
    """
    Lookup map from (model variant, opening type) to an amount.

    Build with ``CompositeKeyIndex.build(rows)``; query with ``lookup``.
    Two indexes built from identical rows compare equal.

    Examples:
        >>> index = CompositeKeyIndex.build([
        ...     IndexRow("SM-S928N", "MNP", 500000),
        ...     IndexRow("SM-S928N", "전유형", 200000),
        ... ])
        >>> index.lookup("sms928n", OpeningType.PORT_IN)
        500000
        >>> index.lookup("SM-S928N", OpeningType.NEW_LINE)
        200000
    """

    def __init__(
        self,
        name: str = "index",
        miss_throttle: Optional[LogThrottle] = None,
    ) -> None:
        self.name = name
        self._entries: "OrderedDict[IndexKey, float]" = OrderedDict()
        self._miss_throttle = miss_throttle or LogThrottle(
            interval=DEFAULT_MISS_COOLDOWN_SECONDS
        )
        self.rows_indexed = 0
        self.blanket_rows_dropped = 0

    # ------------------------------------------------------------------ build

    @classmethod
    def build(
        cls,
        rows: Iterable[IndexRow],
        *,
        name: str = "index",
        miss_throttle: Optional[LogThrottle] = None,
    ) -> "CompositeKeyIndex":
        index = cls(name=name, miss_throttle=miss_throttle)
        index._populate(rows)
        return index

    def _populate(self, rows: Iterable[IndexRow]) -> None:
        classified: List[_ClassifiedRow] = []
        for row in rows:
            model = "" if row.model is None else str(row.model).strip()
            if not model:
                continue
            label = "" if row.opening_type_label is None else str(row.opening_type_label).strip()
            classified.append(
                _ClassifiedRow(
                    model=model,
                    label=label,
                    value=row.value,
                    types=classify(label),
                    blanket=is_all_types(label),
                )
            )

        # Models with explicit port-in and explicit combined rows ignore blanket rows
        by_model: Dict[str, List[_ClassifiedRow]] = {}
        for row in classified:
            by_model.setdefault(row.model, []).append(row)
        fully_explicit: Set[str] = {
            model
            for model, group in by_model.items()
            if any(r.is_port_in for r in group) and any(r.is_combined for r in group)
        }

        explicit_types: Dict[str, Set[OpeningType]] = {}
        for row in classified:
            if row.blanket:
                continue
            explicit_types.setdefault(normalize(row.model), set()).update(row.types)
            keys = _type_keys(row)
            for variant in variant_chain(row.model):
                for type_key in keys:
                    self._set_if_better((variant, type_key), row.value)
            self.rows_indexed += 1

        for row in classified:
            if not row.blanket:
                continue
            if row.model in fully_explicit:
                self.blanket_rows_dropped += 1
                continue
            covered = explicit_types.get(normalize(row.model), set())
            for opening_type in CONCRETE_ORDER:
                if opening_type in covered:
                    continue
                for variant in variant_chain(row.model):
                    self._fill_gap((variant, opening_type), row.value)
            self.rows_indexed += 1

        logger.debug(
            "composite_index.built",
            index=self.name,
            rows=self.rows_indexed,
            keys=len(self._entries),
            blanket_rows_dropped=self.blanket_rows_dropped,
        )

    def _set_if_better(self, key: IndexKey, value: float) -> None:
        existing = self._entries.get(key)
        if not value and existing:
            return
        self._entries[key] = value

    def _fill_gap(self, key: IndexKey, value: float) -> None:
        if key not in self._entries:
            self._entries[key] = value

    # ----------------------------------------------------------------- lookup

    @staticmethod
    def _candidate_models(model: object) -> Iterator[str]:
        exact = "" if model is None else str(model)
        if exact:
            yield exact
        for variant in variant_chain(model):
            if variant != exact:
                yield variant

    def get(self, model: object, opening_type: Union[OpeningType, str, None]) -> Optional[float]:
        """First value along the model's lookup chain, or None."""
        type_key = coerce_opening_type(opening_type)
        for candidate in self._candidate_models(model):
            value = self._entries.get((candidate, type_key))
            if value is not None:
                return value
        return None

    def lookup(
        self,
        model: object,
        opening_type: Union[OpeningType, str, None],
        default: float = 0,
    ) -> float:
        """
        Value for (model, opening type), or ``default`` on a miss.

        Misses are logged at most once per key per cooldown window.
        """
        value = self.get(model, opening_type)
        if value is not None:
            return value

        type_key = coerce_opening_type(opening_type)
        miss_key = (self.name, normalize(model), str(getattr(type_key, "value", type_key)))
        if self._miss_throttle.should_log(miss_key):
            logger.info(
                "composite_index.lookup_miss",
                index=self.name,
                model=str(model),
                opening_type=miss_key[2],
                default=default,
            )
        return default

    # ------------------------------------------------------------- inspection

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        if not isinstance(key, tuple) or len(key) != 2:
            return False
        return self.get(key[0], key[1]) is not None

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, CompositeKeyIndex):
            return NotImplemented
        return self.as_dict() == other.as_dict()

    def __repr__(self) -> str:
        return f"CompositeKeyIndex(name={self.name!r}, keys={len(self._entries)})"

    def as_dict(self) -> Dict[str, float]:
        """Flat ``"variant|type"`` view of every stored key."""
        return {
            f"{variant}|{getattr(type_key, 'value', type_key)}": value
            for (variant, type_key), value in self._entries.items()
        }

    def keys_for(self, model: object) -> List[str]:
        """Stored keys reachable from a model's lookup chain."""
        candidates = set(self._candidate_models(model))
        return sorted(
            f"{variant}|{getattr(type_key, 'value', type_key)}"
            for (variant, type_key) in self._entries
            if variant in candidates
        )
