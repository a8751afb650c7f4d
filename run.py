# run.py
# Main entry point to start the IG package cache service.

import os
from dotenv import load_dotenv

# Load environment variables from .env file, if it exists
dotenv_path = os.path.join(os.path.dirname(__file__), '.env')
if os.path.exists(dotenv_path):
    load_dotenv(dotenv_path)
    print("Loaded environment variables from .env file.")
else:
    print(".env file not found, using default config or environment variables.")

# Config reads the environment at import time, so import after load_dotenv
from igcache import create_app  # noqa: E402
from igcache.context import get_context  # noqa: E402

flask_app = create_app()


if __name__ == '__main__':
    port = int(os.environ.get('PORT', 5000))
    print("Starting IG package cache service...")
    try:
        flask_app.run(host='0.0.0.0', port=port, debug=False)
    finally:
        get_context(flask_app).shutdown(wait=False)
