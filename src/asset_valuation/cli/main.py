from __future__ import annotations

import argparse
import dataclasses
import json
import os
import sys
from typing import Sequence

from ..config import describe_credential, load_settings
from ..domain.inventory import ScannedItem, admin_link, new_admin_key
from ..logging import get_logger
from ..valuation.client import build_client
from ..valuation.errors import ValuationError, offers_manual_retry
from ..valuation.request import data_url_from_file

LOG = get_logger("cli-main")


def _handle_valuate(ns: argparse.Namespace) -> int:
    if ns.image:
        image = data_url_from_file(ns.image)
        if image is None:
            LOG.error("Could not read image: %s", ns.image)
            return 2
    else:
        image = ns.data_url
        if not image.strip():
            LOG.error("--data-url is empty")
            return 2

    settings = load_settings(os.getcwd())
    if ns.no_mock:
        settings = dataclasses.replace(settings, mock_when_unconfigured=False)

    try:
        client = build_client(settings)
        try:
            result = client.valuate(image)
        finally:
            client.close()
        item = ScannedItem.from_valuation(result, quantity=ns.quantity, school_id=ns.school_id)
    except ValuationError as exc:
        LOG.error("Valuation failed (%s): %s", exc.kind, exc)
        if offers_manual_retry(exc):
            LOG.info("The failure looks transient; capture the image again to retry.")
        return 1
    except ValueError as exc:
        LOG.error("Invalid item: %s", exc)
        return 2

    out = result.to_dict()
    out["candidates"] = [c.to_dict() for c in result.candidates()]
    out["item"] = item.to_row()
    out["lineValue"] = item.line_value
    print(json.dumps(out, ensure_ascii=False))
    return 0


def _handle_env_check(_: argparse.Namespace) -> int:
    settings = load_settings(os.getcwd())
    info = describe_credential(settings)
    info.update({"apiUrl": settings.api_url, "model": settings.model})
    print(json.dumps(info, ensure_ascii=False))
    return 0 if info["hasApiKey"] else 1


def _handle_links(ns: argparse.Namespace) -> int:
    key = ns.key or new_admin_key()
    try:
        print(admin_link(ns.origin, key))
    except ValueError as exc:
        LOG.error("%s", exc)
        return 2
    return 0


def _handle_relay_serve(ns: argparse.Namespace) -> int:
    from ..relay import create_app
    import uvicorn

    app = create_app(load_settings(os.getcwd()))
    uvicorn.run(app, host=ns.host, port=ns.port, log_level=ns.log_level)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="asset-valuation",
        description="Value school assets from photos via a hosted multimodal model.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    valuate = subparsers.add_parser("valuate", help="Identify and value the main item in one image.")
    source = valuate.add_mutually_exclusive_group(required=True)
    source.add_argument("--image", help="Path to a JPG/PNG photo")
    source.add_argument("--data-url", help="Image already encoded as a data URL")
    valuate.add_argument("--quantity", type=int, default=1)
    valuate.add_argument("--school-id")
    valuate.add_argument("--no-mock", action="store_true", help="Fail instead of mocking when no API key is set")
    valuate.set_defaults(handler=_handle_valuate)

    env_check = subparsers.add_parser("env-check", help="Report whether the upstream API key is configured.")
    env_check.set_defaults(handler=_handle_env_check)

    links = subparsers.add_parser("links", help="Print a per-school scan link.")
    links.add_argument("--origin", required=True, help="Public origin of the capture app, e.g. https://app.example")
    links.add_argument("--key", help="Existing admin access key (a new one is generated otherwise)")
    links.set_defaults(handler=_handle_links)

    relay = subparsers.add_parser("relay", help="Credential-holding relay utilities.")
    relay_sub = relay.add_subparsers(dest="relay_command", required=True)
    serve = relay_sub.add_parser("serve", help="Run the relay under uvicorn.")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8787)
    serve.add_argument("--log-level", default="info")
    serve.set_defaults(handler=_handle_relay_serve)

    return parser


def main(argv: Sequence[str] | None = None) -> int:
    provided = list(argv) if argv is not None else sys.argv[1:]
    LOG.debug("CLI invoked with arguments: %s", provided)
    args = build_parser().parse_args(provided)
    code = args.handler(args)
    LOG.info("Subcommand '%s' finished with exit code %s.", args.command, code)
    return code


if __name__ == "__main__":
    sys.exit(main())
