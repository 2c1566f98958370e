"""
Infrastructure layer for Subsidy Pricing Hub.

Reusable building blocks shared by the pricing domain:
- matching: model code normalization, opening-type classification and the
  composite-key index
- gateway: stale-while-revalidate, single-flight access to the rate-limited
  tabular source
"""
