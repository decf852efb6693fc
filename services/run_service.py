from __future__ import annotations

import argparse
import os

import uvicorn

from dictation.logging_setup import setup_logging

SERVICE_IMPORTS = {
    "asr": "services.asr_service:app",
    "session": "services.session_service:app",
}


def main() -> None:
    parser = argparse.ArgumentParser(description="Run a dictation FastAPI service with optional HTTPS")
    parser.add_argument("service", choices=sorted(SERVICE_IMPORTS.keys()))
    parser.add_argument("--host", default=os.environ.get("DICTATION_HOST", "127.0.0.1"))
    parser.add_argument("--port", type=int, default=int(os.environ.get("DICTATION_PORT", "8443")))
    parser.add_argument("--reload", action="store_true")
    parser.add_argument("--log-level", default=os.environ.get("DICTATION_LOG_LEVEL", "INFO"))
    parser.add_argument("--ssl-certfile", default=os.environ.get("DICTATION_SSL_CERTFILE"))
    parser.add_argument("--ssl-keyfile", default=os.environ.get("DICTATION_SSL_KEYFILE"))

    args = parser.parse_args()
    setup_logging(args.log_level.upper())

    app_ref = SERVICE_IMPORTS[args.service]
    uvicorn.run(
        app_ref,
        host=args.host,
        port=args.port,
        reload=args.reload,
        ssl_certfile=args.ssl_certfile,
        ssl_keyfile=args.ssl_keyfile,
        log_config=None,
    )


if __name__ == "__main__":
    main()
