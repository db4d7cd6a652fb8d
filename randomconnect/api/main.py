"""Run the random connection API with uvicorn"""

import uvicorn

from randomconnect.api.app import create_app
from randomconnect.api.core.config import get_settings


def main() -> None:
    settings = get_settings()
    app = create_app(settings)
    uvicorn.run(app, host=settings.host, port=settings.port, log_config=None)


if __name__ == "__main__":
    main()
