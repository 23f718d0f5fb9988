"""Business services for subscriptions, billing and usage metering."""
