from __future__ import annotations

import argparse
import asyncio
import json
import sys

from psagate.persistence.db import SessionLocal
from psagate.persistence.repos.integrations import upsert_integration
from psagate.services.credentials import ENCRYPTED_KEY
from psagate.services.crypto import CredentialCipher
from psagate.services.upstreams import UpstreamName


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Store an encrypted integration config for a tenant")
    parser.add_argument("--tenant", required=True, help="Tenant identifier")
    parser.add_argument(
        "--slug",
        required=True,
        choices=[name.value for name in UpstreamName],
        help="Integration slug",
    )
    parser.add_argument(
        "--config",
        required=True,
        help="JSON object with the integration's credential fields, or @path to a JSON file",
    )
    parser.add_argument("--disconnected", action="store_true", help="Store the row but leave it disconnected")
    return parser


def _load_config(raw: str) -> dict:
    if raw.startswith("@"):
        with open(raw[1:], encoding="utf-8") as handle:
            raw = handle.read()
    config = json.loads(raw)
    if not isinstance(config, dict):
        raise ValueError("config must be a JSON object")
    return config


async def _store(args: argparse.Namespace) -> int:
    cipher = CredentialCipher.from_settings()
    if cipher is None:
        raise ValueError("CREDENTIALS_KEY is not set")
    config = _load_config(args.config)
    blob = cipher.encrypt_json(config, tenant_id=args.tenant, slug=args.slug)
    async with SessionLocal() as session:
        await upsert_integration(
            session,
            tenant_id=args.tenant,
            slug=args.slug,
            config={ENCRYPTED_KEY: blob},
            connected=not args.disconnected,
        )
        await session.commit()
    print(f"Stored encrypted {args.slug} config for tenant {args.tenant}.")
    return 0


def main() -> int:
    args = _build_parser().parse_args()
    try:
        return asyncio.run(_store(args))
    except Exception as exc:  # noqa: BLE001 - surface any setup or DB errors
        print(f"encrypt_credentials failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
