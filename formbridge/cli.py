"""Command line entry point.

Usage::

    formbridge serve [--host 0.0.0.0] [--port 8000]
    formbridge test-connection hubspot
    formbridge properties hubspot contacts [--refresh]

``test-connection`` and ``properties`` read credentials from the
environment (``HUBSPOT_ACCESS_TOKEN``, ``MAILCHIMP_API_KEY``, ...) and
print the result as JSON.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys

import uvicorn

from formbridge.core.config import Settings, get_settings
from formbridge.integrations.errors import IntegrationError
from formbridge.integrations.service import FormIntegrationService, create_service
from formbridge.integrations.storage import InMemoryBackend

logger = logging.getLogger(__name__)


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="formbridge",
        description="Form-to-CRM field mapping and submission dispatch.",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the HTTP API.")
    serve.add_argument("--host", default=None, help="Bind address (default: BACKEND_HOST).")
    serve.add_argument("--port", type=int, default=None, help="Bind port (default: BACKEND_PORT).")

    test = sub.add_parser("test-connection", help="Test the credentials configured in the environment.")
    test.add_argument("integration", help="Integration id, e.g. hubspot or mailchimp.")

    props = sub.add_parser("properties", help="List the properties of a remote object type.")
    props.add_argument("integration", help="Integration id, e.g. hubspot or mailchimp.")
    props.add_argument("object_type", help="Object type, e.g. contacts or an audience id.")
    props.add_argument("--refresh", action="store_true", default=False, help="Bypass the schema cache.")

    return parser.parse_args(argv)


def _env_service(settings: Settings) -> FormIntegrationService:
    return create_service(settings.model_copy(update={"credentials_source": "env"}), InMemoryBackend())


async def _run(args: argparse.Namespace, settings: Settings) -> int:
    service = _env_service(settings)
    try:
        if args.command == "test-connection":
            info = await service.test_connection(args.integration)
            output: object = info.to_dict()
        else:
            properties = await service.fetch_properties(args.integration, args.object_type, refresh=args.refresh)
            output = [p.to_dict() for p in properties]
    except IntegrationError as exc:
        print(json.dumps({"success": False, "kind": exc.kind, "message": exc.message}, indent=2))
        return 1
    print(json.dumps(output, indent=2))
    return 0


def main(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    args = _parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    settings = get_settings()

    if args.command == "serve":
        uvicorn.run(
            "formbridge.api.main:app",
            host=args.host or settings.backend_host,
            port=args.port or settings.backend_port,
            log_level=args.log_level.lower(),
        )
        return

    exit_code = asyncio.run(_run(args, settings))
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
