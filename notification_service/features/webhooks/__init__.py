"""Outbound delivery-confirmation webhooks with HMAC signatures."""
