"""
rmswatch calculation engines — pure, synchronous, no I/O.

Components:
- money: lenient monetary parsing to Decimal
- forecast: forecast enrichment and aggregations
- display: forecast labels and currency formatting
- risk_factors: factor catalogue and approval thresholds
- risk_scoring: weighted risk score, level, approval tier
- risk_settings_cache: TTL cache over persisted risk settings
"""
