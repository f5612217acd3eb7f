"""Force-regenerate eSIM PDFs for one confirmation code or every DONE record."""

import argparse

from simbridge.bootstrap import build_cli_components
from simbridge.common.errors import EsimNotFound, OrderItemNotFound


def main() -> None:
    parser = argparse.ArgumentParser(description="Re-render eSIM PDF documents without changing status.")
    target = parser.add_mutually_exclusive_group(required=True)
    target.add_argument("confirmation_code", nargs="?")
    target.add_argument("--all", action="store_true", help="regenerate every DONE record")
    args = parser.parse_args()

    components = build_cli_components("simbridge-regenerate-pdf")
    try:
        if args.all:
            paths = components.finalize.regenerate_all_done()
            for path in paths:
                print(path)
            print(f"Regenerated {len(paths)} PDF(s).")
            return
        try:
            path = components.finalize.regenerate_pdf(args.confirmation_code)
        except (OrderItemNotFound, EsimNotFound) as exc:
            print(str(exc))
            raise SystemExit(1) from exc
        print(path)
    finally:
        components.close()


if __name__ == "__main__":
    main()
