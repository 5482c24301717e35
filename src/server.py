"""Protean Engine runner for the delivery domain.

Starts Engine workers that process events asynchronously when the domain
runs with ``event_processing = "async"`` (the production overlay):
- OutboxProcessor: polls the outbox table, publishes events to the broker
- StreamSubscriptions: read the broker, invoke the board and COD projectors

Usage:
    python src/server.py
    python src/server.py --test-mode   # Process pending messages and exit
"""

import argparse

from protean.server.engine import Engine


def _get_domain():
    """Import and initialize the delivery domain."""
    from delivery.domain import delivery

    delivery.init()
    return delivery


def main():
    parser = argparse.ArgumentParser(description="Delivery Engine runner")
    parser.add_argument(
        "--test-mode",
        action="store_true",
        help="Process the messages already queued, then exit",
    )
    args = parser.parse_args()

    engine = Engine(_get_domain(), test_mode=args.test_mode)
    engine.run()


if __name__ == "__main__":
    main()
