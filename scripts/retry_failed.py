"""Run one retry pass for failed or never-attempted deliveries."""

import argparse
import json

from simbridge.bootstrap import build_cli_components


def main() -> None:
    """CLI entrypoint; safe to run next to a live worker."""

    parser = argparse.ArgumentParser(description="Re-drive fulfillment and finalize stages.")
    parser.add_argument("--stage", choices=["fulfillment", "finalize", "all"], default="all")
    parser.add_argument("--limit", type=int, default=20)
    args = parser.parse_args()

    components = build_cli_components("simbridge-retry")
    try:
        report = components.retry.run(args.stage, args.limit)
    finally:
        components.close()
    print(json.dumps(report.model_dump(mode="json"), indent=2))


if __name__ == "__main__":
    main()
