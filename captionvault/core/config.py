import os
from dotenv import load_dotenv

load_dotenv()

STORE_PATH = os.getenv("STORE_PATH", "./archive/captionvault.db")
EXPORT_DIR = os.getenv("EXPORT_DIR", "./exports")
ALIASES_PATH = os.getenv("ALIASES_PATH", "")

CHUNK_SIZE = int(os.getenv("CHUNK_SIZE", "100"))             # entries per chunk
MAX_CHUNK_BYTES = int(os.getenv("MAX_CHUNK_BYTES", "0"))     # 0 = count-only chunking
MAX_SESSIONS = int(os.getenv("MAX_SESSIONS", "10"))
MAX_ITEM_BYTES = int(os.getenv("MAX_ITEM_BYTES", "1048576"))  # per-key ceiling
QUOTA_BYTES = int(os.getenv("QUOTA_BYTES", "10485760"))

DEFAULT_SAVE_FORMAT = os.getenv("DEFAULT_SAVE_FORMAT", "txt")  # txt|md|html|doc
FILENAME_PATTERN = os.getenv("FILENAME_PATTERN", "{date}_{title}_{format}")
SAVE_AS_TYPE = os.getenv("SAVE_AS_TYPE", "prompt")             # prompt|default|custom
SAVE_LOCATION = os.getenv("SAVE_LOCATION", "")
AUTO_SAVE_ON_END = os.getenv("AUTO_SAVE_ON_END", "1") == "1"

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
