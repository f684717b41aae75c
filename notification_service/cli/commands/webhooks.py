"""Webhook signing CLI commands.

Sign a payload the way outbound webhooks are signed, or check the
signature of a payload received from a webhook.
"""

import sys

import click

from notification_service.cli.utils import error, success


def _secret(secret: str | None) -> str:
    if secret:
        return secret
    from notification_service.core.settings import get_webhook_settings

    return get_webhook_settings().secret.get_secret_value()


@click.group(name="webhooks")
def webhooks() -> None:
    """Webhook signature tools."""


@webhooks.command(name="sign")
@click.argument("payload_file", type=click.File("r"))
@click.option("--secret", envvar="WEBHOOK_SECRET", help="Signing secret (default: WEBHOOK_SECRET)")
def sign(payload_file: click.utils.LazyFile, secret: str | None) -> None:
    """Print the X-Webhook-Signature of PAYLOAD_FILE ("-" for stdin)."""
    from notification_service.features.webhooks.signing import sign_payload

    click.echo(sign_payload(_secret(secret), payload_file.read()))


@webhooks.command(name="verify")
@click.argument("payload_file", type=click.File("r"))
@click.argument("signature")
@click.option("--secret", envvar="WEBHOOK_SECRET", help="Signing secret (default: WEBHOOK_SECRET)")
def verify(payload_file: click.utils.LazyFile, signature: str, secret: str | None) -> None:
    """Check SIGNATURE against PAYLOAD_FILE ("-" for stdin)."""
    from notification_service.features.webhooks.signing import verify_signature

    if verify_signature(_secret(secret), payload_file.read(), signature):
        success("Signature valid")
        return
    error("Signature mismatch")
    sys.exit(1)
