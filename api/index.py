"""
orderpay - serverless entry point.

Exposes the FastAPI application built by `orderpay.app.create_app`.
"""
from orderpay.app import create_app

app = create_app()
