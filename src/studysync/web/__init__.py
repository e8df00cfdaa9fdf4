"""Web API (FastAPI) for subscriptions and sync triggers."""
