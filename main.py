import os

import uvicorn

from taskboard import config


def run() -> None:
    host = os.environ.get("HOST", "0.0.0.0")
    port = int(os.environ.get("PORT", "8000"))
    uvicorn.run("taskboard.main:app", host=host, port=port, log_level=config.LOG_LEVEL.lower())


if __name__ == "__main__":
    run()
