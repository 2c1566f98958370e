"""Tests for the pricing reconciliation pipeline."""

from unittest.mock import patch

import pandas as pd
import pytest

from subsidy_hub.config import UnknownCarrierError
from subsidy_hub.domain.pricing import (
    PipelineState,
    PipelineStateError,
    PolicySettings,
    PricingReconciliationPipeline,
    PricingRequest,
    order_and_deduplicate,
)
from subsidy_hub.infrastructure.matching import OpeningType
from subsidy_hub.io.connectors.tabular import (
    NotFoundError,
    QuotaExceededError,
    TransientNetworkError,
)

from tests.fixtures.pricing_data import StubCarrierSource, device, pricing_config

NEW = OpeningType.NEW_LINE
PORT = OpeningType.PORT_IN


class RecordingSink:
    def __init__(self, failures=()):
        self.failures = list(failures)
        self.calls = []

    def write(self, carrier, results):
        self.calls.append((carrier, len(results)))
        if self.failures:
            raise self.failures.pop(0)


@pytest.fixture
def source():
    return StubCarrierSource()


@pytest.fixture
def pipeline(source):
    return PricingReconciliationPipeline(source, pricing_config())


def find(report, carrier, model, opening_type):
    matches = [
        r
        for r in report.results
        if r.carrier == carrier and r.model == model and r.opening_type == opening_type
    ]
    assert len(matches) == 1
    return matches[0]


class TestRun:
    """Happy-path runs."""

    def test_prices_every_device_and_type(self, pipeline):
        report = pipeline.run()

        assert report.state is PipelineState.DONE
        assert pipeline.state is PipelineState.DONE
        assert len(report.results) == 9
        assert report.carrier_counts == {"SK": 6, "KT": 3}
        assert report.warnings == []

    def test_values(self, pipeline):
        report = pipeline.run()

        s24_port = find(report, "SK", "SM-S928N", PORT)
        assert s24_port.plan_group == "115군"
        assert s24_port.store_support == 640000
        assert s24_port.purchase_price == 610000

        s24_new = find(report, "SK", "SM-S928N", NEW)
        assert s24_new.public_support == 300000
        assert s24_new.policy_rebate == 500000
        assert s24_new.purchase_price == 950000

        a35 = find(report, "SK", "SM-A356N", PORT)
        assert a35.plan_group == "33군"
        assert a35.public_support == 200000
        assert a35.purchase_price == 224400

        iphone = find(report, "KT", "AIP16-128", PORT)
        assert iphone.public_support == 250000
        assert iphone.store_support == 360000

    def test_state_transitions(self, pipeline):
        with patch("subsidy_hub.domain.pricing.pipeline.logger") as mock_logger:
            pipeline.run()

        states = [
            c.kwargs["state"]
            for c in mock_logger.info.call_args_list
            if c.args and c.args[0] == "pricing_pipeline.state_changed"
        ]
        assert states == ["loading_models", "building_indexes", "calculating", "done"]

    def test_rerun_after_done(self, pipeline):
        pipeline.run()
        assert len(pipeline.run().results) == 9

    def test_run_rejected_while_running(self, pipeline):
        pipeline._state = PipelineState.CALCULATING
        with pytest.raises(PipelineStateError):
            pipeline.run()


class TestRequestOptions:
    """Caller-selected carriers, plan groups, types and models."""

    def test_explicit_plan_groups(self, pipeline):
        report = pipeline.run(PricingRequest(carriers=["SK"], plan_groups=["115군", "99군"]))

        assert len(report.results) == 6
        assert {r.plan_group for r in report.results} == {"115군"}
        assert any("99군" in w for w in report.warnings)

    def test_model_filter(self, pipeline):
        report = pipeline.run(PricingRequest(models=["sms928n"]))

        assert {r.model for r in report.results} == {"SM-S928N"}
        assert report.carrier_counts == {"SK": 3, "KT": 0}

    def test_literal_opening_type(self, pipeline):
        report = pipeline.run(PricingRequest(carriers=["SK"], opening_types=["010신규/기변"]))

        s24 = find(report, "SK", "SM-S928N", OpeningType.COMBINED)
        assert s24.public_support == 300000


class TestOrdering:
    """Canonical ordering and de-duplication."""

    def test_source_order_without_model_order(self, pipeline):
        report = pipeline.run()
        models = [r.model for r in report.results]

        assert models == ["SM-S928N"] * 3 + ["SM-A356N"] * 3 + ["AIP16-128"] * 3

    def test_canonical_model_order(self, pipeline, source):
        source.devices["SK"].append(device("SM-F741N", 1480000, "갤럭시 Z 플립6"))
        report = pipeline.run(
            PricingRequest(carriers=["SK"], model_order=["SM-A356N", "sm s928n"])
        )
        models = [r.model for r in report.results]

        assert models == ["SM-A356N"] * 3 + ["SM-S928N"] * 3 + ["SM-F741N"] * 3

    def test_duplicates_keep_first(self, pipeline, source):
        source.devices["SK"].append(device("sm-s928n", 1600000))
        report = pipeline.run(PricingRequest(carriers=["SK"]))

        s24_rows = [r for r in report.results if r.normalized_model == "sms928n"]
        assert len(s24_rows) == 3
        assert {r.factory_price for r in s24_rows} == {1700000}

    def test_empty_input(self):
        assert order_and_deduplicate([], ["SK"]) == []


class TestDegradation:
    """Load failures are contained to one carrier or table."""

    def test_carrier_without_devices_degrades(self, pipeline, source):
        source.devices["KT"] = NotFoundError("missing", range_ref="KT_모델")
        report = pipeline.run()

        assert report.state is PipelineState.DONE
        assert report.carrier_counts == {"SK": 6, "KT": 0}
        assert len(report.warnings) == 1
        assert report.warnings[0].startswith("KT")

    def test_table_failure_uses_empty_index(self, pipeline, source):
        source.support[("SK", "115군")] = QuotaExceededError("quota")
        report = pipeline.run()

        assert find(report, "SK", "SM-S928N", PORT).public_support == 0
        assert find(report, "SK", "SM-A356N", PORT).public_support == 200000
        assert any("SK/115군/support" in w for w in report.warnings)

    def test_policy_failure_applies_default_margin(self, pipeline, source):
        source.policies["KT"] = TransientNetworkError("reset")
        report = pipeline.run()

        assert find(report, "KT", "AIP16-128", PORT).policy_margin == 50000
        assert find(report, "KT", "AIP16-128", PORT).store_support == 350000

    def test_degraded_policy_table_reported(self, pipeline, source):
        source.policies["SK"] = PolicySettings(
            carrier="SK", base_margin=55000, degraded_tables=["insurance"]
        )
        report = pipeline.run()

        assert report.carrier_counts["SK"] == 6
        assert find(report, "SK", "SM-S928N", PORT).policy_margin == 55000
        assert [w for w in report.warnings if "insurance" in w] == [
            "SK: policy table 'insurance' unavailable, defaults applied"
        ]

    def test_unexpected_error_fails_run(self, pipeline, source):
        source.devices["SK"] = RuntimeError("boom")
        with pytest.raises(RuntimeError):
            pipeline.run()
        assert pipeline.state is PipelineState.FAILED

    def test_unknown_carrier_fails_run(self, pipeline):
        with pytest.raises(UnknownCarrierError):
            pipeline.run(PricingRequest(carriers=["XX"]))
        assert pipeline.state is PipelineState.FAILED


class TestResultSink:
    """Optional delivery to the CRUD layer."""

    def test_rows_delivered_per_carrier(self, source):
        sink = RecordingSink()
        PricingReconciliationPipeline(source, pricing_config(), sink=sink).run()
        assert sink.calls == [("SK", 6), ("KT", 3)]

    def test_transient_sink_failure_retried(self, source):
        sink = RecordingSink(failures=[TransientNetworkError("reset"), ConnectionError()])
        report = PricingReconciliationPipeline(source, pricing_config(), sink=sink).run()

        assert sink.calls[:3] == [("SK", 6)] * 3
        assert report.warnings == []

    def test_sink_failure_recorded_as_warning(self, source):
        sink = RecordingSink(failures=[NotFoundError("table gone")])
        report = PricingReconciliationPipeline(source, pricing_config(), sink=sink).run()

        assert report.state is PipelineState.DONE
        assert len(report.results) == 9
        assert any("sink" in w for w in report.warnings)
        assert sink.calls == [("SK", 6), ("KT", 3)]


class TestReportFrame:
    """ReconciliationReport.to_frame()."""

    def test_frame_shape(self, pipeline):
        frame = pipeline.run().to_frame()

        assert isinstance(frame, pd.DataFrame)
        assert len(frame) == 9
        assert frame["opening_type"].tolist()[:3] == ["010신규", "MNP", "기변"]
        assert (frame["purchase_price"] >= 0).all()
        assert set(frame["carrier"]) == {"SK", "KT"}

    def test_empty_frame(self, pipeline, source):
        source.devices = {"SK": [], "KT": []}
        frame = pipeline.run().to_frame()

        assert frame.empty
        assert "store_support" in frame.columns
