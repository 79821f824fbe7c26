# jd_refiner/config.py

import logging
import os

from dotenv import load_dotenv

load_dotenv()

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
)

# --- Configuration ---
PROJECT_ID = os.getenv("GOOGLE_CLOUD_PROJECT", "your-project-id")
REGION = os.getenv("GOOGLE_CLOUD_REGION", "us-central1")

# Either a full SQLAlchemy URL or the discrete DB_* settings below
DATABASE_URL = os.getenv("DATABASE_URL", "")

DB_HOST             = os.environ.get("DB_HOST", "localhost")
DB_PORT             = int(os.environ.get("DB_PORT", "5432"))
DB_NAME             = os.environ.get("DB_NAME", "")
DB_USER             = os.environ.get("DB_USER", "")
DB_PASSWORD         = os.environ.get("DB_PASSWORD", "")
DB_SECRET_ID        = os.environ.get("DB_SECRET_ID", "")

IS_LOCAL_DB = (DB_HOST == "localhost" and not DATABASE_URL)
LOCAL_DB_URL = "sqlite:///jd_refiner.db"

# --- Refinement model ---
REFINE_MODEL = os.getenv("REFINE_MODEL", "gpt-4o")
REFINE_TEMPERATURE = float(os.getenv("REFINE_TEMPERATURE", "0.7"))
REFINE_MAX_OUTPUT_TOKENS = int(os.getenv("REFINE_MAX_OUTPUT_TOKENS", "4000"))
LLM_TIMEOUT = float(os.getenv("LLM_TIMEOUT", "300"))

# --- HTTP ---
CORS_ORIGINS = [
    o.strip()
    for o in os.getenv("CORS_ORIGINS", "*").split(",")
    if o.strip()
]
