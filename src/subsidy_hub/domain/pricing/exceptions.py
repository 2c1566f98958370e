"""Exceptions raised by the pricing domain."""

from typing import Optional


class PricingError(Exception):
    """Base exception for pricing failures."""


class ModelNotFoundError(PricingError, LookupError):
    """The requested model is not in the carrier's device list."""

    def __init__(self, carrier: str, model: str) -> None:
        self.carrier = carrier
        self.model = model
        super().__init__(f"Model '{model}' not found in {carrier} device list")


class PipelineStateError(PricingError):
    """A pipeline was run while it was not idle."""

    def __init__(self, state: str, message: Optional[str] = None) -> None:
        self.state = state
        super().__init__(message or f"Pipeline cannot run from state {state}")
