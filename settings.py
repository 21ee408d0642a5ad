# settings.py
import os

AB_DATA_DIR = os.getenv("AB_DATA_DIR", "ab-test-data")
AB_EVENTS_FILE = os.getenv("AB_EVENTS_FILE", os.path.join(AB_DATA_DIR, "events.jsonl"))
AB_CONFIG_FILE = os.getenv("AB_CONFIG_FILE", "ab-test-config.json")

HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "3000"))

CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
