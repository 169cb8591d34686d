"""Process entrypoint serving the gateway with uvicorn."""

import uvicorn

from whatsapp_gateway.api.app import create_app
from whatsapp_gateway.config import Settings
from whatsapp_gateway.containers import build_container


def main() -> None:
    """Run the HTTP control surface on the configured host and port."""
    settings = Settings()
    app = create_app(build_container(settings))
    uvicorn.run(app, host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
