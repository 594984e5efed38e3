"""Interactive webhook simulator for a running channel gateway.

Each line typed is wrapped in a WhatsApp Cloud API payload, signed with the
channel secret and posted to ``/webhook/whatsapp``.
"""

from __future__ import annotations

import argparse
import json
import time
from typing import Any
from uuid import uuid4

import httpx

from leadflow.adapters.channel_gateway.utils.security import compute_signature


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Send simulated WhatsApp messages to a running gateway.",
    )
    parser.add_argument(
        "--host",
        default="http://localhost:8000",
        help="Base URL for the channel gateway (default: %(default)s)",
    )
    parser.add_argument(
        "--sender",
        default="971501234567",
        help="WhatsApp number of the simulated customer (default: %(default)s).",
    )
    parser.add_argument(
        "--name",
        default=None,
        help="Profile name attached to the simulated customer.",
    )
    parser.add_argument(
        "--secret",
        default="dev-whatsapp",
        help="Webhook signing secret configured on the gateway (default: %(default)s).",
    )
    parser.add_argument(
        "--repeat",
        type=int,
        default=1,
        help="Deliver every message this many times to exercise deduplication.",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=15.0,
        help="HTTP timeout in seconds (default: %(default)s).",
    )
    return parser


def build_payload(sender: str, text: str, *, name: str | None = None) -> dict[str, Any]:
    """Return a WhatsApp Cloud API webhook body carrying one text message."""

    value: dict[str, Any] = {
        "messaging_product": "whatsapp",
        "messages": [
            {
                "from": sender,
                "id": f"wamid.{uuid4().hex}",
                "timestamp": str(int(time.time())),
                "type": "text",
                "text": {"body": text},
            }
        ],
    }
    if name:
        value["contacts"] = [{"wa_id": sender, "profile": {"name": name}}]
    return {
        "object": "whatsapp_business_account",
        "entry": [{"id": "cli", "changes": [{"field": "messages", "value": value}]}],
    }


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    print("LeadFlow webhook simulator")
    print("Press Ctrl-D to exit.\n")

    with httpx.Client(base_url=args.host, timeout=args.timeout) as client:
        while True:
            try:
                message = input("Customer> ").strip()
            except (EOFError, KeyboardInterrupt):
                print()
                break

            if not message:
                continue

            body = json.dumps(build_payload(args.sender, message, name=args.name)).encode("utf-8")
            headers = {
                "Content-Type": "application/json",
                "X-Hub-Signature-256": compute_signature(args.secret, body),
            }
            for _ in range(max(1, args.repeat)):
                response = client.post("/webhook/whatsapp", content=body, headers=headers)
                if response.status_code != 200:
                    print(f"! request failed ({response.status_code}): {response.text}")
                    continue
                for event in response.json().get("events", []):
                    print(
                        f"  {event['status']}: action={event.get('action')} "
                        f"job={event.get('job_id')}"
                    )
    return 0


if __name__ == "__main__":  # pragma: no cover - CLI entrypoint
    raise SystemExit(main())
