# catalog_tracker/config.py
"""Environment-driven settings.

Every knob is read once from the process environment (optionally seeded from a
``.env`` file) so the API, the scheduler and the pipeline CLI share the same
values.
"""
import os
from dotenv import load_dotenv

load_dotenv()

DATABASE_URL = os.getenv("POSTGRES_URL")
# SQLAlchemy 2.x doesn't accept the 'postgres://' scheme
if DATABASE_URL and DATABASE_URL.startswith("postgres://"):
    DATABASE_URL = DATABASE_URL.replace("postgres://", "postgresql+psycopg2://", 1)

DB_POOL_SIZE = int(os.getenv("DB_POOL_SIZE", 5))
DB_MAX_OVERFLOW = int(os.getenv("DB_MAX_OVERFLOW", 10))
# seconds to wait for a pooled connection
DB_POOL_TIMEOUT = int(os.getenv("DB_POOL_TIMEOUT", 10))
DB_BATCH_SIZE = int(os.getenv("DB_BATCH_SIZE", 500))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# enrichment
LLM_PROVIDER = os.getenv("LLM_PROVIDER", "openai").lower()
LLM_MODEL = (os.getenv("LLM_MODEL") or "").strip() or None
OPENAI_MODEL = os.getenv("OPENAI_MODEL") or LLM_MODEL or "gpt-5-nano"
GEMINI_MODEL = os.getenv("GEMINI_MODEL") or LLM_MODEL or "gemini-2.0-flash-001"
GEMINI_BASE_URL = os.getenv("GEMINI_BASE_URL", "https://generativelanguage.googleapis.com/v1beta/openai/")
LLM_BATCH_SIZE = int(os.getenv("LLM_BATCH_SIZE", 20))
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
GEMINI_API_KEY = os.getenv("GEMINI_API_KEY")

# listing source
SCRAPER_COMMAND = os.getenv("SCRAPER_COMMAND", "")
SCRAPER_CWD = os.getenv("SCRAPER_CWD") or None
PRODUCTS_PATH = os.getenv("PRODUCTS_PATH", "products.json")

# seller scope
SELLERS_SHEET_URL = os.getenv("SELLERS_SHEET_URL")
SELLER_PHONES = os.getenv("SELLER_PHONES", "")
TARGET_PHONE_NUMBER = os.getenv("TARGET_PHONE_NUMBER")
SELLER_NAME = os.getenv("SELLER_NAME")

DEFAULT_CRON_EXPR = "0 9,21 * * *"
