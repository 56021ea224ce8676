"""Command line interface for running the API server."""
import argparse
import logging

import uvicorn

from config import settings_conf

def main():
    """Run the API server."""
    parser = argparse.ArgumentParser(description="Run the market trading API")
    parser.add_argument("--host", default="0.0.0.0")
    parser.add_argument("--port", type=int, default=8000)
    parser.add_argument("--reload", action="store_true", help="Reload on code changes")
    args = parser.parse_args()

    # Configure logging
    logging.basicConfig(
        level=getattr(logging, str(settings_conf['log_level']).upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    logger = logging.getLogger(__name__)
    logger.info(f"Starting API on {args.host}:{args.port}")

    uvicorn.run(
        "api:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_level=str(settings_conf['log_level']).lower()
    )

if __name__ == "__main__":
    main()
