"""
ASGI entry point for serving without the operator console:

    uvicorn server.asgi:app --app-dir backend --host localhost --port 5000

Recording is then driven through POST /recording/start and /recording/stop.
"""

from dotenv import load_dotenv

load_dotenv()

# pylint: disable=wrong-import-position
from config import AppConfig
from observability.logger import configure_logging
from server.app import create_app

config = AppConfig.load_from_env()
configure_logging(log_level=config.log_level, json_output=config.enable_json_logs)

app = create_app(config)
