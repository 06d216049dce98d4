"""Run the gateway with uvicorn: ``python -m auth_gateway``."""

import uvicorn

from auth_gateway.config import settings


def main() -> None:
    uvicorn.run(
        "auth_gateway.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        access_log=False,
    )


if __name__ == "__main__":
    main()
