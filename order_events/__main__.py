"""Allow running the event service as a module: python -m order_events."""

from order_events.runner import main

if __name__ == "__main__":
    main()
