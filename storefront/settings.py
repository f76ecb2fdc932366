# storefront/settings.py
import os
from decimal import Decimal

from dotenv import load_dotenv

load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL")
POOL_MIN = int(os.getenv("APP_POOL_MIN", "1"))
POOL_MAX = int(os.getenv("APP_POOL_MAX", "10"))

# "postgres" or "memory" (fixture store, no database needed)
STORE_BACKEND = os.getenv("STOREFRONT_STORE", "postgres")

LOW_STOCK_THRESHOLD = int(os.getenv("LOW_STOCK_THRESHOLD", "10"))
FREE_SHIPPING_THRESHOLD = Decimal(os.getenv("FREE_SHIPPING_THRESHOLD", "500.00"))
FLAT_SHIPPING_FEE = Decimal(os.getenv("FLAT_SHIPPING_FEE", "40.00"))
TAX_RATE = Decimal(os.getenv("TAX_RATE", "0.18"))

LOG_LEVEL = os.getenv("STOREFRONT_LOG_LEVEL", "INFO")
