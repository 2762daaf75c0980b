"""Paper trading web service: virtual cash, live quotes, positions and price alerts."""
