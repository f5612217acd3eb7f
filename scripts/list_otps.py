"""List OTPs still waiting for operator confirmation."""

import argparse
import json

from simbridge.bootstrap import build_cli_components


def main() -> None:
    """CLI entrypoint; expires stale OTPs before listing."""

    parser = argparse.ArgumentParser(description="List pending upload OTPs.")
    parser.add_argument("--json", action="store_true", help="print JSON instead of a table")
    args = parser.parse_args()

    components = build_cli_components("simbridge-list-otps")
    try:
        expired = components.otps.expire_old_otps()
        pending = components.otps.get_pending_otps()
    finally:
        components.close()

    if args.json:
        rows = [
            {
                "otp_code": otp.otp_code,
                "confirmation_code": otp.confirmation_code,
                "expires_at": otp.otp_expires_at.isoformat(),
                "pdf_file_path": otp.pdf_file_path,
                "upload_url": otp.upload_url,
            }
            for otp in pending
        ]
        print(json.dumps({"expired": expired, "pending": rows}, indent=2))
        return

    if expired:
        print(f"Expired {expired} stale OTP(s).")
    if not pending:
        print("No pending OTPs.")
        return
    print(f"{'OTP':<8} {'CONFIRMATION':<16} EXPIRES")
    for otp in pending:
        print(f"{otp.otp_code:<8} {otp.confirmation_code:<16} {otp.otp_expires_at.isoformat()}")


if __name__ == "__main__":
    main()
