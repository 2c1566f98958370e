"""Tests for CompositeKeyIndex build precedence and lookup chain."""

from unittest.mock import patch

import pytest

from subsidy_hub.infrastructure.matching import CompositeKeyIndex, IndexRow, OpeningType
from subsidy_hub.utils.log_throttle import LogThrottle

from tests.fixtures.fake_tabular_source import FakeClock

NEW = OpeningType.NEW_LINE
PORT = OpeningType.PORT_IN
CHANGE = OpeningType.DEVICE_CHANGE


def build(*rows):
    return CompositeKeyIndex.build([IndexRow(*row) for row in rows], name="test")


class TestExplicitPrecedence:
    """Explicit rows always win over blanket rows."""

    def test_port_in_row_beats_all_types_row(self):
        index = build(("SM-S928N", "MNP", 500000), ("SM-S928N", "전유형", 200000))

        assert index.lookup("SM-S928N", PORT) == 500000
        assert index.lookup("SM-S928N", NEW) == 200000
        assert index.lookup("SM-S928N", CHANGE) == 200000

    def test_blanket_row_first_gives_same_index(self):
        specific_first = build(("SM-S928N", "MNP", 500000), ("SM-S928N", "전유형", 200000))
        blanket_first = build(("SM-S928N", "전유형", 200000), ("SM-S928N", "MNP", 500000))

        assert blanket_first == specific_first
        assert blanket_first.lookup("SM-S928N", PORT) == 500000

    def test_blanket_only_adds_missing_keys(self):
        specific_rows = [("A2566", "MNP", 300000), ("A2566", "기변", 100000)]
        without = build(*specific_rows).as_dict()
        with_blanket = build(*specific_rows, ("A2566", "전체", 999)).as_dict()

        for key, value in without.items():
            assert with_blanket[key] == value
        added = set(with_blanket) - set(without)
        assert added
        assert all(key.endswith("|010신규") for key in added)

    def test_no_bleed_across_spellings(self):
        index = build(("SM-S928N", "MNP", 500000), ("SMS928N", "전유형", 200000))

        for spelling in ("SM-S928N", "SMS928N", "sms928n", "sm-s928n"):
            assert index.lookup(spelling, PORT) == 500000
        assert index.lookup("SMS928N", NEW) == 200000

    def test_explicit_zero_is_not_filled_by_blanket(self):
        index = build(("X100", "010신규", 0), ("X100", "전유형", 70000))

        assert index.lookup("X100", NEW, default=-1) == 0
        assert index.lookup("X100", PORT) == 70000

    def test_blanket_dropped_for_fully_explicit_model(self):
        index = build(
            ("A100", "MNP", 5),
            ("A100", "010신규/기변", 3),
            ("A100", "전유형", 9),
        )

        assert index.blanket_rows_dropped == 1
        assert index.lookup("A100", PORT) == 5
        assert index.lookup("A100", NEW) == 3
        assert index.lookup("A100", CHANGE) == 3


class TestSetIfBetter:
    """Repeated explicit rows for the same key."""

    def test_zero_does_not_overwrite_value(self):
        assert build(("X1", "MNP", 100), ("X1", "MNP", 0)).lookup("X1", PORT) == 100

    def test_value_overwrites_zero(self):
        assert build(("X1", "MNP", 0), ("X1", "MNP", 100)).lookup("X1", PORT) == 100

    def test_later_non_zero_wins(self):
        assert build(("X1", "MNP", 100), ("X1", "MNP", 200)).lookup("X1", PORT) == 200


class TestCombinedAndPortIn:
    """Combined labels fan out; port-in labels stay on their own key."""

    def test_combined_label_reachable_by_every_key(self):
        index = build(("SM-F741N", "신규/기변", 300000))

        assert index.lookup("SM-F741N", "NewLine") == 300000
        assert index.lookup("SM-F741N", "DeviceChange") == 300000
        assert index.lookup("SM-F741N", "신규/기변") == 300000
        assert index.lookup("SM-F741N", OpeningType.COMBINED) == 300000
        assert index.lookup("SM-F741N", PORT, default=-1) == -1

    def test_port_in_row_never_writes_literal_label(self):
        index = build(("X1", "번호이동", 500))

        assert index.lookup("X1", PORT) == 500
        assert index.lookup("X1", "번호이동", default=-1) == -1
        assert not any("번호이동" in key for key in index.as_dict())

    def test_port_in_not_cross_assigned_from_synonym_rows(self):
        index = build(("X1", "MNP", 500000), ("X1", "신규/기변", 300000))

        assert index.lookup("X1", PORT) == 500000
        assert index.lookup("X1", NEW) == 300000
        assert index.lookup("X1", "신규/기변") == 300000

    def test_port_in_combined_row_skips_literal(self):
        index = build(("X2", "MNP/010신규/기변", 42))

        assert index.lookup("X2", PORT) == 42
        assert index.lookup("X2", "MNP/010신규/기변", default=-1) == -1


class TestLookup:
    """Lookup chain, defaults and determinism."""

    def test_variant_spellings_hit(self):
        index = build(("SM-S928N", "MNP", 1))

        assert index.lookup("sm s928n", PORT) == 1
        assert index.lookup("SMS928N", "MNP") == 1
        assert ("sm_s928n", PORT) in index

    def test_miss_returns_default(self):
        index = build(("SM-S928N", "MNP", 1))

        assert index.lookup("UNKNOWN", PORT) == 0
        assert index.lookup("UNKNOWN", PORT, default=-1) == -1
        assert index.get("UNKNOWN", PORT) is None

    def test_rows_without_model_are_skipped(self):
        index = build(("", "MNP", 1), ("  ", "전유형", 2))
        assert len(index) == 0

    def test_rebuild_is_deterministic(self):
        rows = [("SM-S928N", "MNP", 5), ("A2566", "전유형", 7), ("A2566", "신규/기변", 3)]
        assert build(*rows).as_dict() == build(*rows).as_dict()
        assert list(build(*rows).as_dict()) == list(build(*rows).as_dict())

    def test_keys_for_model(self):
        index = build(("SM-S928N", "MNP", 5))
        keys = index.keys_for("SMS928N")
        assert "SM-S928N|MNP" in keys
        assert all(key.endswith("|MNP") for key in keys)


class TestMissLogging:
    """Matching misses are logged at most once per key per window."""

    @pytest.fixture
    def index(self):
        clock = FakeClock()
        throttle = LogThrottle(interval=300, clock=clock)
        index = CompositeKeyIndex.build(
            [IndexRow("SM-S928N", "MNP", 1)], name="throttled", miss_throttle=throttle
        )
        return index, clock

    def test_repeated_miss_logged_once(self, index):
        index, _ = index
        with patch("subsidy_hub.infrastructure.matching.composite_index.logger") as mock_logger:
            index.lookup("UNKNOWN", PORT)
            index.lookup("unknown", PORT)
            index.lookup("UNKNOWN", NEW)

        assert mock_logger.info.call_count == 2

    def test_miss_logged_again_after_window(self, index):
        index, clock = index
        with patch("subsidy_hub.infrastructure.matching.composite_index.logger") as mock_logger:
            index.lookup("UNKNOWN", PORT)
            clock.advance(301)
            index.lookup("UNKNOWN", PORT)

        assert mock_logger.info.call_count == 2
