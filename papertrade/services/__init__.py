"""Business logic: quotes, ledger, trading, alerts, relay, portfolio and users."""
