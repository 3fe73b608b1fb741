"""Entry point: parse config and run the serial fork server until interrupted."""

import sys

from serialfork.bridge import run_bridge
from serialfork.config import parse_args


def main():
    try:
        args = parse_args()
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    try:
        run_bridge(
            device=args.device,
            baud=args.baud,
            listen=args.listen,
            tcp_port=args.port,
            web_port=args.webport,
            verbose=args.verbose,
        )
    except OSError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
