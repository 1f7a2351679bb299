"""Analytics engine: service, scheduler, configuration and CLI."""
