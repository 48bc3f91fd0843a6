"""Run the gateway under uvicorn: `python -m tryon` or `tryon-gateway`."""

import uvicorn

from tryon.core.config import Settings


def main() -> None:
    settings = Settings()  # type: ignore[call-arg]
    uvicorn.run("tryon.app:app", host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
