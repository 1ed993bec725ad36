"""
Visitor Intelligence Engine - Main Entry Point
==============================================
Run this file to start the FastAPI server.

Usage:
    python main.py                    # Start server on port 8000
    python main.py --port 8080        # Start server on custom port
    python main.py --reload           # Start with auto-reload (dev mode)

API Documentation:
    http://localhost:8000/docs        # Swagger UI
    http://localhost:8000/dashboard   # Visitor dashboard
"""

import argparse
import logging
import uvicorn
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

from visitor_intel.config.settings import SERVER_CONFIG


def main():
    parser = argparse.ArgumentParser(description="Visitor Intelligence API Server")
    parser.add_argument(
        "--host",
        type=str,
        default=SERVER_CONFIG["host"],
        help="Host to bind the server to (default: 0.0.0.0)",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=SERVER_CONFIG["port"],
        help="Port to run the server on (default: 8000)",
    )
    parser.add_argument(
        "--reload",
        action="store_true",
        help="Enable auto-reload for development",
    )
    parser.add_argument(
        "--workers",
        type=int,
        default=1,
        help="Number of worker processes (default: 1; visits are kept per process)",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default=SERVER_CONFIG["log_level"],
        help="Logging level (default: INFO)",
    )

    args = parser.parse_args()

    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )

    print(f"""
    ╔══════════════════════════════════════════════════════════════╗
    ║               VISITOR INTELLIGENCE ENGINE                    ║
    ║                      Version 1.0.0                           ║
    ╠══════════════════════════════════════════════════════════════╣
    ║  Server starting on http://{args.host}:{args.port}                    ║
    ║  API Docs:  http://localhost:{args.port}/docs                      ║
    ║  Dashboard: http://localhost:{args.port}/dashboard                 ║
    ║  Health:    http://localhost:{args.port}/health                    ║
    ╚══════════════════════════════════════════════════════════════╝
    """)

    uvicorn.run(
        "visitor_intel.api.endpoints:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        workers=args.workers if not args.reload else 1,
        log_level=args.log_level.lower(),
    )


if __name__ == "__main__":
    main()
