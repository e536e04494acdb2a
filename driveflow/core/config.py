# driveflow/core/config.py
import os
import sys
import logging
from pathlib import Path

from dotenv import load_dotenv
from loguru import logger

# Root proyek = dua level di atas driveflow/core
PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
dotenv_path = PROJECT_ROOT / ".env"

if dotenv_path.is_file():
    logger.info(f"Loading environment variables from: {dotenv_path}")
    load_dotenv(dotenv_path=dotenv_path, override=False)
else:
    logger.debug(f".env file not found at {dotenv_path}. Relying on system environment variables.")


# --- Intercept Handler (stdlib logging -> Loguru) ---
class InterceptHandler(logging.Handler):
    """Routes records from the standard logging module into Loguru."""
    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno
        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1
        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def setup_logging():
    """Configure Loguru sinks (console + rotating file) and intercept stdlib loggers."""
    log_level_name = os.getenv("LOG_LEVEL", "INFO").upper()
    log_format = (
        "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
        "<level>{level: <8}</level> | "
        "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
    )
    log_file_path = Path(os.getenv("LOG_FILE_PATH", "logs/driveflow_{time:YYYY-MM-DD}.log"))
    log_rotation = os.getenv("LOG_ROTATION", "1 day")
    log_retention = os.getenv("LOG_RETENTION", "7 days")
    log_serialize = os.getenv("LOG_SERIALIZE", "False").lower() == "true"

    logger.remove()
    logger.add(sys.stderr, level=log_level_name, format=log_format, colorize=True)

    # File sink opsional, kegagalan tidak menghentikan aplikasi
    try:
        log_file_path.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_file_path,
            level=log_level_name,
            format=log_format,
            rotation=log_rotation,
            retention=log_retention,
            serialize=log_serialize,
            enqueue=True,
            backtrace=True,
            diagnose=False,
            encoding="utf-8",
        )
        logger.info(f"File logging enabled at: {log_file_path}")
    except OSError as e:
        logger.error(f"Failed to setup file logging at {log_file_path}: {e}")

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    for name in list(logging.root.manager.loggerDict):
        if name.startswith(("uvicorn", "fastapi", "starlette", "apscheduler")):
            std_logger = logging.getLogger(name)
            std_logger.handlers = [InterceptHandler()]
            std_logger.propagate = False

    logger.info(f"Loguru logging setup complete. Level: {log_level_name}")


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name, str(default))
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"Invalid {name}={raw!r}. Using default: {default}.")
        return default


# --- JWT Configuration ---
SECRET_KEY: str = os.getenv("SECRET_KEY")
if not SECRET_KEY:
    logger.critical("FATAL: SECRET_KEY environment variable is not set.")
    raise ValueError("SECRET_KEY environment variable is not set.")

ALGORITHM: str = os.getenv("ALGORITHM", "HS256")
ACCESS_TOKEN_EXPIRE_MINUTES: int = _int_env("ACCESS_TOKEN_EXPIRE_MINUTES", 60)

# --- Database Configuration ---
MONGODB_URL: str = os.getenv("MONGODB_URL")
if not MONGODB_URL:
    logger.critical("FATAL: MONGODB_URL environment variable is not set.")
    raise ValueError("MONGODB_URL environment variable is not set.")

_default_db_name = "driveflow_db"
_path_part = MONGODB_URL.rsplit("/", 1)[-1].split("?")[0]
if _path_part and "://" in MONGODB_URL and MONGODB_URL.count("/") > 2:
    _default_db_name = _path_part
DATABASE_NAME: str = os.getenv("DATABASE_NAME", _default_db_name)

# --- Workflow ---
PICKUP_PHOTOS_REQUIRED: int = _int_env("PICKUP_PHOTOS_REQUIRED", 4)
DELIVERY_OTP_TTL_MINUTES: int = _int_env("DELIVERY_OTP_TTL_MINUTES", 20)
DELIVERY_OTP_MAX_ATTEMPTS: int = _int_env("DELIVERY_OTP_MAX_ATTEMPTS", 5)
ORDER_NUMBER_START: int = _int_env("ORDER_NUMBER_START", 1000)

# --- Uploads ---
UPLOAD_DIR: Path = Path(os.getenv("UPLOAD_DIR", str(PROJECT_ROOT / "uploads")))
UPLOAD_URL_PREFIX: str = os.getenv("UPLOAD_URL_PREFIX", "/uploads")
MAX_UPLOAD_SIZE_MB: int = _int_env("MAX_UPLOAD_SIZE_MB", 10)

# --- Scheduler ---
SCHEDULER_TIMEZONE: str = os.getenv("SCHEDULER_TIMEZONE", "Asia/Kolkata")
OTP_CLEANUP_INTERVAL_MINUTES: int = _int_env("OTP_CLEANUP_INTERVAL_MINUTES", 15)

logger.info(f"JWT Algorithm: {ALGORITHM}")
logger.info(f"Access Token Expire Minutes: {ACCESS_TOKEN_EXPIRE_MINUTES}")
logger.info(f"Database Name: {DATABASE_NAME}")
