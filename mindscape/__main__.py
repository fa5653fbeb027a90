"""Run the API with uvicorn: ``python -m mindscape``."""
import logging
import os

import uvicorn

log = logging.getLogger("mindscape")


def main() -> None:
    host = os.getenv("HOST", "127.0.0.1")
    try:
        port = int(os.getenv("PORT", "8000") or 8000)
    except ValueError:
        port = 8000
    log.info("server: starting on %s:%d", host, port)
    uvicorn.run(
        "mindscape.main:app",
        host=host,
        port=port,
        log_level=os.getenv("LOG_LEVEL", "INFO").lower(),
    )


if __name__ == "__main__":
    main()
