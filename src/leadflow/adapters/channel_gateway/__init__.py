"""Channel gateway: provider webhooks in front of the inbound pipeline."""
