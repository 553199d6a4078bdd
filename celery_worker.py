#!/usr/bin/env python3
"""
Celery worker for the storefront orders API.
Consumes the "email" queue (order confirmation emails).
"""

from dotenv import load_dotenv

load_dotenv()

if __name__ == "__main__":
    from core.celery import celery_app
    from core.logging import configure_logging

    configure_logging()
    celery_app.start([
        "worker",
        "--loglevel=info",
        "--queues=email",
        "--concurrency=2",
        "--without-gossip",
        "--without-mingle",
    ])
