from __future__ import annotations

import argparse
import logging
from typing import Optional, Sequence

from backstream.config import get_settings
from backstream.server.middleware import RequestIdLogFilter


def _parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Backstream stream job server")
    parser.add_argument("--host", default=settings.host, help="Host to bind to")
    parser.add_argument("--port", type=int, default=settings.port, help="Port to listen on")
    parser.add_argument("--log-level", default="INFO", help="Logging level")
    parser.add_argument(
        "--reload", action="store_true", help="Reload on code changes (development)."
    )
    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> None:
    args = _parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - [%(request_id)s] %(message)s",
    )
    for handler in logging.getLogger().handlers:
        handler.addFilter(RequestIdLogFilter())

    import uvicorn

    uvicorn.run(
        "backstream.server:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_level=args.log_level.lower(),
    )


if __name__ == "__main__":
    main()
