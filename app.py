"""Captionarr entry point."""
import uvicorn

from captionarr.api.app import app
from captionarr.config import Config

if __name__ == "__main__":
    uvicorn.run(app, host=Config.API_HOST, port=Config.API_PORT)
