"""
Application configuration loaded from environment.
"""
import os

from dotenv import load_dotenv

# Values are read when this module is imported, so .env must load first
load_dotenv()


class Settings:
    """Application settings."""

    # Database
    DATABASE_PATH = os.getenv(
        "DATABASE_PATH",
        os.path.join(os.path.dirname(__file__), "..", "data", "buy_orders.db")
    )

    # App
    ENV = os.getenv("ENV", "development")
    DEBUG = ENV == "development"
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
    FLASK_SECRET_KEY = os.getenv("FLASK_SECRET_KEY", "CHANGE_ME_DEV_ONLY")

    # Outbound calls to payment/commerce platforms
    ADAPTER_TIMEOUT_SECONDS = float(os.getenv("ADAPTER_TIMEOUT_SECONDS", "5"))
    ADAPTER_MAX_ATTEMPTS = int(os.getenv("ADAPTER_MAX_ATTEMPTS", "2"))

    # Payments
    STRIPE_API_KEY = os.getenv("STRIPE_API_KEY", "")
    STRIPE_API_BASE = os.getenv("STRIPE_API_BASE", "https://api.stripe.com")

    # Storefronts
    SHOPIFY_STORE_DOMAIN = os.getenv("SHOPIFY_STORE_DOMAIN", "")
    SHOPIFY_ACCESS_TOKEN = os.getenv("SHOPIFY_ACCESS_TOKEN", "")
    SHOPIFY_API_VERSION = os.getenv("SHOPIFY_API_VERSION", "2023-10")
    WOOCOMMERCE_URL = os.getenv("WOOCOMMERCE_URL", "")
    WOOCOMMERCE_CONSUMER_KEY = os.getenv("WOOCOMMERCE_CONSUMER_KEY", "")
    WOOCOMMERCE_CONSUMER_SECRET = os.getenv("WOOCOMMERCE_CONSUMER_SECRET", "")

    # Discount codes
    DISCOUNT_CODE_PREFIX = os.getenv("DISCOUNT_CODE_PREFIX", "LIMINA")
    DISCOUNT_CODE_EXPIRY_DAYS = int(os.getenv("DISCOUNT_CODE_EXPIRY_DAYS", "30"))

    # Buy orders
    DEFAULT_CURRENCY = os.getenv("DEFAULT_CURRENCY", "GBP")
    DEFAULT_ORDER_EXPIRY_DAYS = int(os.getenv("DEFAULT_ORDER_EXPIRY_DAYS", "30"))

    # Owner of shadow products created from unseen webhook products
    DEFAULT_MERCHANT_ID = os.getenv(
        "DEFAULT_MERCHANT_ID", "123e4567-e89b-12d3-a456-426614174002"
    )


settings = Settings()
