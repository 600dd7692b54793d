"""
Serverless entry point for the TicketFlow Triage API
"""
import os
import sys

# Add parent directory to path
parent_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if parent_dir not in sys.path:
    sys.path.insert(0, parent_dir)

# Set environment variables for serverless
os.environ.setdefault("ENVIRONMENT", "production")
os.environ.setdefault("POLICY_HOT_RELOAD", "false")  # No file watching in serverless

from mangum import Mangum
from src.main import app

# Lifespan runs on cold start so the engine is wired before the first request
handler = Mangum(app, lifespan="auto")
