import os
from dotenv import load_dotenv

load_dotenv()

# Platform identity used as sender of system and admin messages
SYSTEM_USER_ID = os.getenv("SYSTEM_USER_ID", "00000000-0000-0000-0000-000000000000")

# Money Settings
PAYMENT_CURRENCY = os.getenv("PAYMENT_CURRENCY", "INR")
DEFAULT_COMMISSION_PERCENT = os.getenv("DEFAULT_COMMISSION_PERCENT", "10.00")  # Parsed as Decimal
ADVANCE_PERCENT = int(os.getenv("ADVANCE_PERCENT", 30))

# Collaboration Flow Settings
DEFAULT_MAX_REVISIONS = int(os.getenv("DEFAULT_MAX_REVISIONS", 3))

# Escrow Settings
ESCROW_AUTO_RELEASE_DAYS = int(os.getenv("ESCROW_AUTO_RELEASE_DAYS", 14))

# Payment Gateway
RAZORPAY_BASE_URL = os.getenv("RAZORPAY_BASE_URL", "https://api.razorpay.com/v1")
RAZORPAY_KEY_ID = os.getenv("RAZORPAY_KEY_ID", "")
RAZORPAY_KEY_SECRET = os.getenv("RAZORPAY_KEY_SECRET", "")
PAYMENT_GATEWAY_TIMEOUT_SECONDS = float(os.getenv("PAYMENT_GATEWAY_TIMEOUT_SECONDS", 10))

# Realtime
REDIS_URL = os.getenv("REDIS_URL")
CHAT_RATE_LIMIT_PER_MINUTE = int(os.getenv("CHAT_RATE_LIMIT_PER_MINUTE", 30))
