"""JSONログ

1行1オブジェクトで標準出力へ。構造化データは log_event() で data フィールドに載せる。
"""
import logging
import sys
import json
from datetime import datetime, timezone

# 外部ライブラリのうち、DEBUG時でも詳細を出さないもの
QUIET_LOGGERS = {
    "sqlalchemy.engine": logging.WARNING,
    "stripe": logging.WARNING,
    "uvicorn.access": logging.INFO,
}


class JSONFormatter(logging.Formatter):
    def format(self, record):
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        data = getattr(record, "extra_data", None)
        if data:
            log_entry["data"] = data
        if record.exc_info and record.exc_info[0]:
            log_entry["exception"] = self.formatException(record.exc_info)
        # datetime等はstr()で出力
        return json.dumps(log_entry, ensure_ascii=False, default=str)


def setup_logging(debug: bool = False):
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter())

    root = logging.getLogger()
    root.setLevel(logging.DEBUG if debug else logging.INFO)
    root.handlers.clear()
    root.addHandler(handler)

    for name, level in QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(level)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def log_event(logger: logging.Logger, message: str, level: int = logging.INFO, **data):
    """構造化データ付きでログ出力

        log_event(logger, "Checkout Session作成", account_id=1, plan="PRO")
    """
    logger.log(level, message, extra={"extra_data": data})
