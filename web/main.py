"""Serve the cell engine API"""

import uvicorn

from config import settings


def serve():
    uvicorn.run(
        "web.api:app",
        host=settings.WEB_HOST,
        port=settings.WEB_PORT,
        log_level=settings.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    serve()
