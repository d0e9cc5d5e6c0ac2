"""
rmswatch — Current RMS webhook watcher and forecasting dashboard API.

Architecture:
    rmswatch/
    ├── api/             # FastAPI routers (HTTP layer)
    ├── db/              # SQLAlchemy models and engine
    ├── engine/          # Pure calculators (money, forecast, risk scoring)
    ├── middleware/      # Error handling, request context
    ├── schemas/         # Pydantic request/response models
    └── services/        # Event store, rules, sync, Current RMS client

Data Flow:
    Current RMS webhook → Event store → Business rules
    Current RMS API → Opportunity sync → DB → Forecast / Risk engines → API

Version: 1.0.0
"""

__version__ = "1.0.0"
