# config.py
import os

from dotenv import load_dotenv

load_dotenv()

# ---------- Database ----------
DB_FILE = "formpilot_local.db"
DATABASE_URL = os.getenv("DATABASE_URL", f"sqlite:///{DB_FILE}")

# ---------- Gemini ----------
GEMINI_API_KEY = os.getenv("GEMINI_API_KEY")
GEMINI_MODEL = os.getenv("GEMINI_MODEL", "gemini-2.5-flash")

# ---------- HTTP ----------
# form urls are relative ("/f/<slug>") unless a public base url is set
PUBLIC_BASE_URL = os.getenv("PUBLIC_BASE_URL", "").rstrip("/")
CORS_ORIGINS = [
    o.strip()
    for o in os.getenv("CORS_ORIGINS", "http://localhost:3000").split(",")
    if o.strip()
]

# header set by the auth provider / gateway once the user is verified
AUTH_USER_HEADER = os.getenv("AUTH_USER_HEADER", "X-User-Id")

# ---------- Misc ----------
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
