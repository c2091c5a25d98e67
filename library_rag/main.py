#!/usr/bin/env python3
"""
Library Catalog Assistant API - application entrypoint
"""

import os

import uvicorn

from .core.app import create_app
from .core.config import get_environment


def main():
    """Main entry point"""
    environment = get_environment()
    port = int(os.getenv("PORT", "8000"))

    # Conversation state lives in process memory, so always a single worker.
    if environment == "production":
        uvicorn.run(
            "library_rag.main:app",
            host="0.0.0.0",
            port=port,
            workers=1,
            log_level="info",
            access_log=True,
            reload=False,
            server_header=False,
            date_header=False,
        )
    else:
        uvicorn.run(
            "library_rag.main:app",
            host="0.0.0.0",
            port=port,
            reload=True,
            log_level="debug",
        )


# Create app instance for uvicorn
app = create_app()

if __name__ == "__main__":
    main()
