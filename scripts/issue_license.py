#!/usr/bin/env python3
"""
HRSM Licensing - Issue License File

Émet un fichier de licence signé pour un client. Les limites de chaque
module sont celles du tier choisi dans le catalogue par défaut.

    python scripts/issue_license.py --company-id acme --company-name "Acme SARL" \
        --module attendance:business --module payroll:starter --output acme.license.json
"""
from __future__ import annotations

import argparse
import json
import os
import sys
from pathlib import Path

from hrsm_licensing.core import ConfigLoader, CryptoProvider
from hrsm_licensing.licensing import SignatureService, ValidationStructureError, generate_license_file
from hrsm_licensing.registry import PricingTier, load_default_registry

DEFAULT_OUTPUT = Path("license.json")


def parse_module(value: str) -> tuple:
    key, _, tier = value.partition(":")
    try:
        return key, PricingTier(tier or PricingTier.STARTER.value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"tier invalide pour {key}: {tier}")


def resolve_secret(args: argparse.Namespace) -> str:
    if args.config:
        return ConfigLoader(args.config).load().license_secret
    secret = args.secret or os.environ.get("HRSM_LICENSE_SECRET")
    if not secret:
        raise SystemExit("Secret de licence manquant (--secret, --config ou HRSM_LICENSE_SECRET)")
    return secret


def issue(args: argparse.Namespace) -> dict:
    registry = load_default_registry()
    modules = {}
    for key, tier in args.module:
        pricing = registry.pricing(key, tier)
        if pricing is None:
            raise SystemExit(f"Module inconnu: {key}")
        modules[key] = {"enabled": True, "tier": tier.value, "limits": dict(pricing.limits)}

    return generate_license_file(
        args.company_id,
        args.company_name,
        modules,
        resolve_secret(args),
        SignatureService(CryptoProvider()),
        valid_days=args.valid_days,
        license_key=args.license_key,
    )


def main() -> None:
    parser = argparse.ArgumentParser(description="Issue a signed HRSM license file")
    parser.add_argument("--company-id", required=True, help="Identifiant client")
    parser.add_argument("--company-name", required=True, help="Raison sociale")
    parser.add_argument(
        "--module",
        type=parse_module,
        action="append",
        required=True,
        help="Module licencié au format key[:tier] (répétable)",
    )
    parser.add_argument("--valid-days", type=int, default=365, help="Durée de validité en jours")
    parser.add_argument("--license-key", default=None, help="Clé HRMS-XXXX-XXXX-XXXX (générée si absente)")
    parser.add_argument("--secret", default=None, help="Secret HMAC de signature")
    parser.add_argument("--config", default=None, help="Fichier YAML moteur d'où lire le secret")
    parser.add_argument("--output", type=Path, default=DEFAULT_OUTPUT, help="Fichier JSON de destination")
    args = parser.parse_args()

    try:
        data = issue(args)
    except ValidationStructureError as e:
        print("\n".join(e.errors), file=sys.stderr)
        raise SystemExit(1)

    args.output.write_text(json.dumps(data, indent=2), encoding="utf-8")
    print(f"License {data['licenseKey']} written to {args.output} (expires {data['expiresAt']})")


if __name__ == "__main__":
    main()
