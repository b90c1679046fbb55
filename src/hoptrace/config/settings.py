from decimal import Decimal
import os
from dotenv import load_dotenv
load_dotenv()
# ---- TronScan ----
TRONSCAN_BASE_URL = os.environ.get("TRONSCAN_BASE_URL", "https://apilist.tronscanapi.com/api")
TRONSCAN_API_KEYS = [
    k.strip() for k in os.environ.get("TRONSCAN_API_KEYS", "").split(",") if k.strip()
]
TRONSCAN_API_KEY_HEADER = os.environ.get("TRONSCAN_API_KEY_HEADER", "TRON-PRO-API-KEY")
TRONSCAN_TIMEOUT_SEC = float(os.environ.get("TRONSCAN_TIMEOUT_SEC", "15"))
TRONSCAN_OVERFETCH_FACTOR = int(os.environ.get("TRONSCAN_OVERFETCH_FACTOR", "3"))     # rows requested per kind = limit * factor

# Fetch queue: one request in flight, fixed pause after each
FETCH_DELAY_SEC = float(os.environ.get("FETCH_DELAY_SEC", "1.0"))

# ---- Tokens ----
USDT_CONTRACT = os.environ.get("USDT_CONTRACT", "TR7NHqjeKQxGTCi8q8ZY4pL8otSzgjLj6t")
SUN_PER_UNIT = Decimal(os.environ.get("SUN_PER_UNIT", "1000000"))  # TRX and USDT both use 6 decimals

MIN_TRANSFER_AMOUNT = Decimal(os.environ.get("MIN_TRANSFER_AMOUNT", "1.0"))

# ---- Trace engine ----
TRACE_BATCH_SIZE = int(os.environ.get("TRACE_BATCH_SIZE", "5"))
TRACE_BATCH_PAUSE_SEC = float(os.environ.get("TRACE_BATCH_PAUSE_SEC", "0.3"))
TRACE_DEFAULT_TX_LIMIT = int(os.environ.get("TRACE_DEFAULT_TX_LIMIT", "20"))

# ---- Live monitor ----
MONITOR_POLL_SEC = float(os.environ.get("MONITOR_POLL_SEC", "30"))
MONITOR_ADDRESS_PAUSE_SEC = float(os.environ.get("MONITOR_ADDRESS_PAUSE_SEC", "0.5"))
MONITOR_TX_LIMIT = int(os.environ.get("MONITOR_TX_LIMIT", "20"))

# ---- Risk labels ----
SUPABASE_URL = os.environ.get("SUPABASE_URL")
SUPABASE_KEY = os.environ.get("SUPABASE_KEY")
RISK_LABEL_TABLE = os.environ.get("RISK_LABEL_TABLE", "address_labels")
RISK_LABEL_TIMEOUT_SEC = float(os.environ.get("RISK_LABEL_TIMEOUT_SEC", "15"))
RISK_LABELS_CSV = os.environ.get("RISK_LABELS_CSV")

# ---- Sessions / status ----
SESSION_DIR = os.environ.get("SESSION_DIR", ".sessions")
STATUS_LOG_LIMIT = int(os.environ.get("STATUS_LOG_LIMIT", "200"))
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
