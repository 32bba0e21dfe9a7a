import os
from decimal import Decimal

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./shoppos.db")
CORS_ORIGIN = os.getenv("CORS_ORIGIN", "http://localhost:5173").split(",")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

DEFAULT_BRANCH = os.getenv("DEFAULT_BRANCH", "DPHeadbranch")

SMS_GATEWAY_URL = os.getenv("SMS_GATEWAY_URL", "http://localhost:3000/api/sms/send-sms")
SMS_TIMEOUT = float(os.getenv("SMS_TIMEOUT", "10"))

SHOP_NAME = os.getenv("SHOP_NAME", "DP Communication")
CURRENCY = os.getenv("CURRENCY", "LKR")

LOW_STOCK_THRESHOLD = int(os.getenv("LOW_STOCK_THRESHOLD", "10"))
ZERO = Decimal("0.00")
