"""Tests for the PricingService facade."""

import pytest

from subsidy_hub.config import UnknownCarrierError
from subsidy_hub.domain.pricing import ModelNotFoundError, PipelineState, PricingService
from subsidy_hub.infrastructure.matching import OpeningType
from subsidy_hub.io.readers import TableKind

from tests.fixtures.pricing_data import StubCarrierSource, pricing_config


@pytest.fixture
def source():
    return StubCarrierSource()


@pytest.fixture
def service(source):
    return PricingService(source, pricing_config())


class TestComputePricing:
    def test_single_model(self, service):
        result = service.compute_pricing("SK", "115군", "MNP", "SM-S928N")

        assert result.opening_type == OpeningType.PORT_IN
        assert result.store_support == 640000
        assert result.purchase_price == 610000

    def test_model_matched_in_any_spelling(self, service):
        result = service.compute_pricing("SK", "115군", OpeningType.PORT_IN, "sm s928n")
        assert result.model == "SM-S928N"

    def test_default_plan_group(self, service):
        result = service.compute_pricing("SK", None, "NEW", "SM-A356N")

        assert result.plan_group == "33군"
        assert result.opening_type == OpeningType.NEW_LINE
        assert result.public_support == 200000

    def test_unknown_model(self, service):
        with pytest.raises(ModelNotFoundError) as exc_info:
            service.compute_pricing("SK", "115군", "MNP", "SM-X999")
        assert exc_info.value.carrier == "SK"

    def test_unknown_carrier(self, service):
        with pytest.raises(UnknownCarrierError):
            service.compute_pricing("XX", "115군", "MNP", "SM-S928N")


class TestBuildIndex:
    def test_support_index_for_default_group(self, service):
        index = service.build_index("SK", "support")

        assert index.lookup("SM-S928N", OpeningType.PORT_IN) == 450000
        assert index.lookup("SM-S928N", OpeningType.DEVICE_CHANGE) == 300000

    def test_table_kind_enum(self, service):
        index = service.build_index("SK", TableKind.REBATE, "33군")
        assert index.lookup("SM-A356N", OpeningType.NEW_LINE) == 125000

    def test_invalid_table_kind(self, service):
        with pytest.raises(ValueError):
            service.build_index("SK", "margin")


class TestHelpers:
    def test_normalize(self):
        assert PricingService.normalize("SM-S928N") == "sms928n"

    def test_classify_opening_type(self):
        assert PricingService.classify_opening_type("010신규/기변") == frozenset(
            {OpeningType.NEW_LINE, OpeningType.DEVICE_CHANGE}
        )

    def test_run(self, service):
        report = service.run()

        assert report.state is PipelineState.DONE
        assert len(report.results) == 9
