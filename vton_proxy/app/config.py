import os
import tempfile
from pathlib import Path

# Base path for the API package
BASE_PATH = Path(__file__).resolve().parent

STATIC_DIR = BASE_PATH / "static"

# Hugging Face Space serving the try-on model and the token used to reach it.
SPACE_ID = os.environ.get("TRYON_SPACE_ID", "yisol/IDM-VTON")
HF_TOKEN = os.environ.get("HF_TOKEN") or None
REQUIRE_TOKEN = os.environ.get("TRYON_REQUIRE_TOKEN", "0") == "1"

PORT = int(os.environ.get("PORT", "3000"))

# Public base URL injected into the widget script. Render sets
# RENDER_EXTERNAL_URL; API_URL is the manual override.
API_URL = (
    os.environ.get("RENDER_EXTERNAL_URL")
    or os.environ.get("API_URL")
    or f"http://localhost:{PORT}"
).rstrip("/")

PROCESSING_TIMEOUT_MS = int(os.environ.get("TRYON_TIMEOUT_MS", "180000"))
DOWNLOAD_TIMEOUT_S = float(os.environ.get("TRYON_DOWNLOAD_TIMEOUT_S", "30"))
RETRY_ATTEMPTS = max(1, int(os.environ.get("TRYON_RETRY_ATTEMPTS", "2")))
RETRY_BASE_DELAY_S = float(os.environ.get("TRYON_RETRY_BASE_DELAY_S", "2.0"))

# Payloads shorter than this many characters cannot be a real image.
MIN_IMAGE_LENGTH = 100

MAX_BODY_BYTES = int(float(os.environ.get("TRYON_MAX_BODY_MB", "50")) * 1024 * 1024)

# Fixed model parameters for the /tryon endpoint of the Space.
TRYON_API_NAME = "/tryon"
GARMENT_DESCRIPTION = "Try-on"
IS_UPPER_BODY = True
AUTO_CROP = False
DENOISE_STEPS = 30
SEED = 42

# Directory where decoded uploads are staged for the duration of a request.
TEMP_DIR = Path(os.environ.get("TRYON_TEMP_DIR", tempfile.gettempdir()))

_cors_env = os.environ.get("TRYON_CORS_ORIGINS")
if _cors_env:
    CORS_ALLOW_ORIGINS = [origin.strip() for origin in _cors_env.split(",") if origin.strip()]
else:
    # The widget is embedded on arbitrary storefronts.
    CORS_ALLOW_ORIGINS = ["*"]

CORS_ALLOW_ORIGIN_REGEX = os.environ.get("TRYON_CORS_ORIGIN_REGEX") or None

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()
