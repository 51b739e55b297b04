"""
Marketplace Webhook Server

FastAPI application receiving signed order events from the marketplace.

Modules:
- webhook_api: webhook receiver and health endpoint
"""
