"""
=============================================================================
HOT SEAT — APPLICATION ENTRY POINT (app.py)
=============================================================================

WHAT THIS FILE DOES (in plain language):
----------------------------------------
This is the "front door" of the server. When you run "python app.py", the
computer starts a web server that the game's browser client talks to. The
server:

  1. Stores participant profiles and their calibration baselines.
  2. Runs calibration and game sessions (countdown, recording, verdict, ...).
  3. Receives what the browser hears (speech transcripts) and sees (face
     samples) while a question is being answered, and scores each answer.

The actual URL handlers live in routes.py.

HOW TO RUN:
-----------
  - From project root:  python app.py
  - By default the app is at:  http://localhost:5000

CONFIGURATION:
--------------
  - Settings come from the .env file and config.py.
  - Never put real API keys in the code; use environment variables.
=============================================================================
"""

# ---------------------------------------------------------------------------
# Step 1: Load environment variables from .env (before anything else)
# ---------------------------------------------------------------------------
from pathlib import Path
from dotenv import load_dotenv

load_dotenv(Path(__file__).resolve().parent / ".env")

# ---------------------------------------------------------------------------
# Step 2: Import the web framework and our own modules
# ---------------------------------------------------------------------------
import logging

from flask import Flask
from flask_cors import CORS
from flask_compress import Compress

from routes import register_routes
import config

# ---------------------------------------------------------------------------
# Step 3: Logging and configuration warnings
# ---------------------------------------------------------------------------
logging.basicConfig(
    level=getattr(logging, config.LOG_LEVEL, logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
config.warn_missing_config()


def create_app() -> Flask:
    """
    Create and configure the Flask application.

    - CORS so the browser client can call the API from another origin.
    - Compression for the larger JSON responses (results with samples).
    - All API routes from routes.py.
    """
    app = Flask(__name__)
    CORS(app, resources={r"/*": {"origins": "*"}})
    Compress(app)
    register_routes(app)
    return app


app = create_app()


if __name__ == "__main__":
    # Debug: Flask's development server. Otherwise: Waitress with a few threads,
    # enough for the client's polling plus transcript and sample pushes.
    if config.FLASK_DEBUG:
        app.run(host=config.FLASK_HOST, port=config.FLASK_PORT, debug=True)
    else:
        import waitress
        waitress.serve(app, host=config.FLASK_HOST, port=config.FLASK_PORT, threads=6)
