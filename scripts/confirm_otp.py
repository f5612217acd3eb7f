"""Confirm one upload OTP and complete its eSIM record."""

import argparse

from simbridge.bootstrap import build_cli_components


def main() -> None:
    parser = argparse.ArgumentParser(description="Confirm an upload OTP by code.")
    parser.add_argument("otp_code")
    parser.add_argument("--by", default="cli-admin", help="identity recorded as confirmed_by")
    args = parser.parse_args()

    components = build_cli_components("simbridge-confirm-otp")
    try:
        validation = components.finalize.confirm_upload(args.otp_code, args.by)
    finally:
        components.close()

    if not validation.valid:
        print(f"Rejected: {validation.reason}")
        raise SystemExit(1)
    print(f"Confirmed {validation.otp.confirmation_code} by {args.by}")


if __name__ == "__main__":
    main()
