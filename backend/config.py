"""
Configuration for the CommCare App Forge Backend
"""
import os
import tempfile
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

# API Configuration
# Only the generation flow needs a key; validating uploads works without one.
GEMINI_API_KEY = os.getenv("GEMINI_API_KEY")

# AI Configuration - Using Gemini
AI_MODEL = os.getenv("AI_MODEL", "gemini-2.0-flash-exp")
AI_TEMPERATURE = float(os.getenv("AI_TEMPERATURE", "0.2"))
AI_REQUEST_TIMEOUT = int(os.getenv("AI_REQUEST_TIMEOUT", "120"))
AI_MAX_RETRIES = int(os.getenv("AI_MAX_RETRIES", "2"))

# Paths
BASE_DIR = Path(__file__).parent
FORGE_HOME = Path(os.getenv("FORGE_HOME", str(Path.home() / "Documents" / "CommCare Forge")))
EXPORTS_DIR = Path(os.getenv("EXPORTS_DIR", str(FORGE_HOME / "exports")))
LOGS_DIR = Path(os.getenv("LOGS_DIR", str(FORGE_HOME / "logs")))
BUILD_DIR = Path(os.getenv("BUILD_DIR", str(Path(tempfile.gettempdir()) / "commcare-forge")))

# External validator (commcare-cli.jar run through Java)
CLI_JAR_PATH = Path(os.getenv("CLI_JAR_PATH", str(BASE_DIR / "lib" / "commcare-cli.jar")))
JAVA_BIN = os.getenv("JAVA_BIN", "java")
CLI_TIMEOUT_SECONDS = int(os.getenv("CLI_TIMEOUT_SECONDS", "30"))
TOOLCHAIN_PROBE_TIMEOUT_SECONDS = 10

# Generate/validate loop
MAX_VALIDATION_RETRIES = int(os.getenv("MAX_VALIDATION_RETRIES", "5"))

# CommCare HQ import target
HQ_SERVER = os.getenv("HQ_SERVER", "www.commcarehq.org")
HQ_DOMAIN = os.getenv("HQ_DOMAIN", "")

# Server Configuration
HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "3000"))
CORS_ORIGINS = [
    "http://localhost:5173",
    "http://127.0.0.1:5173",
    "http://localhost:8000",
    "http://127.0.0.1:8000",
]
