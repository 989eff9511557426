"""
Logging configuration for TransferWatch.

Features:
- Separate log file for delivered transfers
- Rotating file handlers (max 50MB per file, keep 5 backups)
- Automatic cleanup of old logs (keeps last 7 days)
- Console output for real-time monitoring
"""
import logging
import logging.handlers
from pathlib import Path
from datetime import datetime, timedelta
from typing import Optional


# Log directory structure
LOG_DIR = Path("logs")

# Separate log files for different purposes
SYSTEM_LOG = LOG_DIR / "system.log"
TRANSFERS_LOG = LOG_DIR / "transfers.log"
ERRORS_LOG = LOG_DIR / "errors.log"

# Rotation settings
MAX_BYTES = 50 * 1024 * 1024  # 50 MB per file
BACKUP_COUNT = 5

# Cleanup settings
LOG_RETENTION_DAYS = 7

TRANSFERS_LOGGER = 'transfers'


def _rotating_handler(path: Path, level: int, formatter: logging.Formatter) -> logging.Handler:
    handler = logging.handlers.RotatingFileHandler(
        path,
        maxBytes=MAX_BYTES,
        backupCount=BACKUP_COUNT,
        encoding='utf-8'
    )
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def setup_logging(log_level: str = "INFO") -> dict:
    """
    Configure logging with rotation and cleanup.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)

    Returns:
        dict: Dictionary of specialized loggers
    """
    LOG_DIR.mkdir(exist_ok=True)
    level = getattr(logging, log_level.upper(), logging.INFO)

    formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()
    root_logger.addHandler(console_handler)
    root_logger.addHandler(_rotating_handler(SYSTEM_LOG, level, formatter))
    root_logger.addHandler(_rotating_handler(ERRORS_LOG, logging.ERROR, formatter))

    # Every delivered transfer, also propagated to console + system log
    transfers_logger = logging.getLogger(TRANSFERS_LOGGER)
    transfers_logger.handlers.clear()
    transfers_logger.addHandler(_rotating_handler(TRANSFERS_LOG, logging.INFO, formatter))
    transfers_logger.propagate = True

    cleanup_old_logs()

    root_logger.info("=" * 80)
    root_logger.info("TransferWatch logging system initialized")
    root_logger.info(f"Log directory: {LOG_DIR.absolute()}")
    root_logger.info(f"Log level: {log_level}")
    root_logger.info(f"Rotation: {MAX_BYTES // (1024*1024)} MB per file, {BACKUP_COUNT} backups")
    root_logger.info(f"Retention: {LOG_RETENTION_DAYS} days")
    root_logger.info("=" * 80)

    return {
        'system': root_logger,
        'transfers': transfers_logger,
    }


def cleanup_old_logs(log_dir: Path = LOG_DIR, retention_days: int = LOG_RETENTION_DAYS) -> int:
    """
    Delete log files (and rotated backups) older than retention_days.

    Returns:
        Number of files deleted
    """
    cutoff = (datetime.now() - timedelta(days=retention_days)).timestamp()
    deleted = 0
    freed = 0

    for log_path in list(log_dir.glob("*.log")) + list(log_dir.glob("*.log.*")):
        try:
            stat = log_path.stat()
            if stat.st_mtime >= cutoff:
                continue
            log_path.unlink()
        except OSError as e:
            logging.error(f"Error cleaning up {log_path}: {e}")
            continue
        deleted += 1
        freed += stat.st_size

    if deleted:
        logging.info(f"Cleaned up {deleted} old log files ({freed / (1024 * 1024):.2f} MB freed)")
    return deleted


def log_transfer(chain: str, kind: str, amount: str, asset: str, sender: str, tx_hash: Optional[str]):
    """Log a delivered transfer to the dedicated transfers log."""
    logger = logging.getLogger(TRANSFERS_LOGGER)
    sender_str = f"{sender[:10]}..." if sender else "unknown"
    logger.info(f"{chain} {kind} {amount} {asset} from {sender_str} tx={tx_hash or 'n/a'}")
