"""
Root pytest configuration.
Settings are read at import time, so the test environment must be in place
before anything from the application is imported.
"""
import os

os.environ["TESTING"] = "True"
os.environ["DEBUG"] = "False"
os.environ["EMAIL_USE_CELERY"] = "False"
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test_secret")
os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ.setdefault("REFRESH_SECRET", "test-refresh")
