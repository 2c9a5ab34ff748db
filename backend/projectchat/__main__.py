"""Run the chat server with uvicorn: ``python -m projectchat``."""
import uvicorn

from .config import get_config

if __name__ == "__main__":
    config = get_config()
    uvicorn.run(
        "projectchat.main:app",
        host=config.server.host,
        port=config.server.port,
        reload=config.server.reload,
        log_level=config.logging.level,
    )
