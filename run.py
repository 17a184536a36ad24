import os

from fixbot.logger import get_logger

logger = get_logger()


def main() -> None:
    host = os.getenv("FIXBOT_HOST", "0.0.0.0")
    port = int(os.getenv("FIXBOT_PORT", "8000"))
    display_url = f"http://localhost:{port}"

    logger.info(f"Starting fixbot on {display_url} (binding to {host}:{port})")

    import uvicorn

    uvicorn.run(
        app="fixbot.main:app",
        host=host,
        port=port,
        reload=False,
        workers=1,
        log_level="info",
    )


if __name__ == "__main__":
    main()
