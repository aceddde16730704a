import logging
import asyncio
import sys
import time
from typing import Any
import io

from fastapi import FastAPI
from uvicorn import Server, Config

from api.app import create_app
from cfg import HOST, PORT


# --- Logging Configuration ---
class ExtraFormatter(logging.Formatter):
    converter = time.gmtime
    def format(self, record: logging.LogRecord) -> str:
        s = super().format(record)
        s = s.encode('utf-8', errors='replace').decode('utf-8')
        standard_attrs = set(logging.makeLogRecord({}).__dict__.keys())
        ignore = standard_attrs | {"message", "asctime", "color_message"}
        extras = {k: v for k, v in record.__dict__.items() if k not in ignore}
        if extras:
            formatted_extras = ", ".join(f"{k}={v}" for k, v in extras.items())
            s += f" | extra: ({formatted_extras})"
        return s

formatter = ExtraFormatter(
    '[%(asctime)s] [%(levelname)s] [%(name)s:%(lineno)d in %(funcName)s()] - %(message)s'
)
stdout_handler = logging.StreamHandler(io.TextIOWrapper(sys.stdout.buffer, encoding="utf-8", errors="replace"))
stderr_handler = logging.StreamHandler(io.TextIOWrapper(sys.stderr.buffer, encoding="utf-8", errors="replace"))

stderr_handler.setLevel(logging.WARNING)
stderr_handler.setFormatter(formatter)

class MaxLevelFilter(logging.Filter):
    def __init__(self, max_level): self.max_level = max_level
    def filter(self, record): return record.levelno <= self.max_level

stdout_handler.addFilter(MaxLevelFilter(logging.INFO))
stdout_handler.setLevel(logging.DEBUG)
stdout_handler.setFormatter(formatter)

root_logger = logging.getLogger()
root_logger.setLevel(logging.DEBUG)
root_logger.handlers.clear()
root_logger.addHandler(stdout_handler)
root_logger.addHandler(stderr_handler)

# === Silence 3rd-party INFO/DEBUG logs ===
noisy_loggers = [
    "python_multipart.multipart",
    "aiosqlite",
    "asyncpg",
    "sqlalchemy", "sqlalchemy.engine",
    "sqlalchemy.engine.Engine", "sqlalchemy.pool",
    "httpx",
    "httpcore", "httpcore.connection", "httpcore.http11",
    "uvicorn.access",
]
for name in noisy_loggers:
    logger = logging.getLogger(name)
    while logger.handlers:
        handler = logger.handlers.pop()
        logger.removeHandler(handler)
    logger.setLevel(logging.WARNING)
    logger.propagate = True

logger = logging.getLogger(__name__)
logger.setLevel(logging.DEBUG)

# --- FastAPI setup ---
app = create_app()


async def run_app(app: FastAPI, host: str = HOST, port: int = PORT,
                  log_config: Any = None, log_level: int = logging.INFO, **kwargs):
    config = Config(app, host, port, log_config=log_config, log_level=log_level, **kwargs)
    server = Server(config)
    return await server.serve()


async def main():
    try:
        logger.info("Application starting.", extra={"host": HOST, "port": PORT})
        await run_app(app)
    except Exception as e:
        logger.exception("Application failure.", extra={"error_type": type(e).__name__})
        raise
    finally:
        logger.info("Application shutdown completed.")


if __name__ == "__main__":
    asyncio.run(main())
