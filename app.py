"""Production entry point for MemberDesk using uvicorn workers"""

import os
import sys

import uvicorn

# Load environment variables from .env file
from dotenv import load_dotenv

load_dotenv()

if __name__ == "__main__":
    # Ensure the current directory is in sys.path so imports work correctly
    root_dir = os.path.dirname(os.path.abspath(__file__))
    sys.path.insert(0, root_dir)

    # Production configuration from environment
    PORT = int(os.getenv("PORT", "3000"))
    HOST = os.getenv("HOST", "127.0.0.1")
    ENVIRONMENT = os.getenv("ENVIRONMENT", "development").lower()
    WORKERS = int(os.getenv("WORKERS", "2"))

    print(f"Starting MemberDesk in {ENVIRONMENT} mode...")
    print(f"Host: {HOST}, Port: {PORT}, Workers: {WORKERS}")

    # Each worker builds its own app; they share the users file through its lock file
    uvicorn.run(
        "web.main:create_app",
        factory=True,
        host=HOST,
        port=PORT,
        workers=WORKERS if ENVIRONMENT == "production" else 1,
        log_level="info",
        access_log=True,
    )
