#!/usr/bin/env python3
"""
Script to run the Book Library API server.
"""

import uvicorn
import sys
from pathlib import Path

# Add project root to Python path
project_root = Path(__file__).parent
sys.path.insert(0, str(project_root))

from api.config import config as api_config
from utilities.config import config


def main():
    """Run the API server."""
    print("📚 Starting Book Library API Server")
    print(f"📡 Host: {api_config.host}")
    print(f"🔌 Port: {api_config.port}")
    print(f"🌐 Environment: {config.environment}")
    print(f"🗄️  Database: {config.mongodb_database}")
    print(f"🔐 Authentication: {'REQUIRED' if api_config.require_auth else 'OPTIONAL'}")
    print(f"📖 Docs: http://localhost:{api_config.port}/api-docs")
    print("=" * 50)

    uvicorn.run(
        "api.main:app",
        host=api_config.host,
        port=api_config.port,
        reload=config.debug,
        log_level=config.log_level.lower(),
        access_log=True
    )


if __name__ == "__main__":
    main()
