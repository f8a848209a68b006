"""ASGI entry point for the ReconFlow server."""

from .config import load_config
from .factory import create_app

config = load_config()

app = create_app(config)


def run() -> None:
    """Run the server with uvicorn using the loaded configuration."""
    import uvicorn

    uvicorn.run("reconflow.main:app", **config.get_uvicorn_config())


if __name__ == "__main__":
    run()
