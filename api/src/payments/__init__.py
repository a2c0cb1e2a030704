"""Payment orders, verification and gateway webhooks."""
