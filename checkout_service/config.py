"""
config.py — Environment Configuration for the Checkout Service

All settings are read once from environment variables at import time.
Defaults are suitable for local development with docker-compose style hostnames.
"""

import os

# Persistence
STORE_BACKEND = os.environ.get("STORE_BACKEND", "mongo")  # "mongo" | "memory"
MONGO_URL = os.environ.get("MONGO_URL", "mongodb://localhost:27017")
DATABASE_NAME = os.environ.get("DATABASE_NAME", "marketplace")

# Identity
JWT_SECRET = os.environ.get("JWT_SECRET", "devsecret")
JWT_ALGO = os.environ.get("JWT_ALGO", "HS256")

# Payment gateway (normally injected by the deployment)
PAYMENT_GATEWAY_URL = os.environ.get("PAYMENT_GATEWAY_URL", "http://payment_gateway:8001")
GATEWAY_KEY_ID = os.environ.get("GATEWAY_KEY_ID", "rzp_test_key")
GATEWAY_KEY_SECRET = os.environ.get("GATEWAY_KEY_SECRET", "rzp_test_secret")
GATEWAY_CONNECT_TIMEOUT = float(os.environ.get("GATEWAY_CONNECT_TIMEOUT", "5.0"))
GATEWAY_READ_TIMEOUT = float(os.environ.get("GATEWAY_READ_TIMEOUT", "8.0"))
GATEWAY_MAX_RETRIES = int(os.environ.get("GATEWAY_MAX_RETRIES", "3"))
GATEWAY_RETRY_BACKOFF = float(os.environ.get("GATEWAY_RETRY_BACKOFF", "0.5"))
CURRENCY = os.environ.get("CURRENCY", "INR")

# Logging
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
LOG_FILE = os.environ.get("LOG_FILE", "")

# Pricing rules
TAX_RATE = 0.18
FREE_SHIPPING_THRESHOLD = 500
FLAT_SHIPPING_CHARGE = 50
