# octopus-acme/renew.py
import sys
import logging
import click
from pydantic import ValidationError
from adapters.octopus import Octopus, OctopusError
from adapters.acme import AcmeClient, AcmeError, AcmeRateLimitError
from models import Settings
from orchestrator import Renewer

logger = logging.getLogger(__name__)


def _fail(msg: str, detail: str = ""):
    logger.error(msg)
    if detail:
        logger.error(detail)
    sys.exit(1)


def _setup_logging(verbose: bool = False):
    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO,
                        format="%(asctime)s [%(levelname)s] %(message)s")


class RenewCommand(click.Command):
    """Bad option values exit 1 like every other fatal error instead of click's usage code 2."""
    def main(self, *args, **kwargs):
        kwargs["standalone_mode"] = False
        try:
            return super().main(*args, **kwargs)
        except click.ClickException as e:
            _setup_logging()
            _fail("Invalid or missing parameters", e.format_message())
        except click.Abort:
            _setup_logging()
            _fail("Aborted")


@click.command(cls=RenewCommand)
@click.option("--domain", envvar="CERT_DOMAIN", help="Domain to renew (certificate subject CN)")
@click.option("--email", envvar="CERT_EMAIL", help="ACME account contact email")
@click.option("--aws-access-key", envvar="AWS_ACCESS_KEY_ID", help="Route 53 access key for DNS-01")
@click.option("--aws-secret-key", envvar="AWS_SECRET_ACCESS_KEY", help="Route 53 secret key for DNS-01")
@click.option("--api-key", envvar="OCTOPUS_API_KEY", help="Deployment server API key")
@click.option("--pfx-password", envvar="CERT_PFX_PASSWORD", help="Password protecting the uploaded PFX")
@click.option("--server-uri", envvar="OCTOPUS_URL", help="Deployment server base URL")
@click.option("--space", envvar="OCTOPUS_SPACE", default="Spaces-1", show_default=True)
@click.option("--expiry-days", envvar="CERT_EXPIRY_DAYS", type=int, default=30, show_default=True,
              help="Renew when the certificate expires within this many days")
@click.option("--staging/--production", envvar="CERT_STAGING", default=False,
              help="Use the staging CA (and its fake issuer name for lookup)")
@click.option("--issuer", envvar="CERT_ISSUER", default=None, help="Override the issuer CN used for lookup")
@click.option("--key-type", envvar="CERT_KEY_TYPE", default="RSA2048", show_default=True)
@click.option("--acme-home", envvar="ACME_HOME", default=None, help="acme.sh state directory")
@click.option("--acme-sh", envvar="ACME_SH", default="/usr/local/bin/acme.sh", show_default=True)
@click.option("--dry-run", is_flag=True, help="Look up and report; do not issue or upload")
@click.option("-v", "--verbose", is_flag=True)
def cli(acme_sh, verbose, **opts):
    """Renew the domain's certificate in the deployment server when it is missing or expiring."""
    _setup_logging(verbose)
    try:
        settings = Settings(**opts)
    except ValidationError as e:
        _fail("Invalid or missing parameters", str(e))

    renewer = Renewer(
        settings,
        Octopus(settings.server_uri, settings.api_key, settings.space),
        AcmeClient(acme_sh=acme_sh, home=settings.acme_home),
    )
    try:
        outcome = renewer.run()
    except OctopusError as e:
        _fail(f"Deployment server request failed: {e}", e.body)
    except AcmeRateLimitError as e:
        retry = f" Retry after {e.next_retry_iso}." if e.next_retry_iso else ""
        _fail(f"ACME rate limit reached for {settings.domain} at {e.directory_url}.{retry}",
              f"--- stdout ---\n{e.raw_out}\n--- stderr ---\n{e.raw_err}")
    except AcmeError as e:
        _fail(f"Certificate issuance failed: {e}",
              f"--- stdout ---\n{e.raw_out}\n--- stderr ---\n{e.raw_err}")
    logger.info("Done: %s", outcome)


if __name__ == "__main__":
    cli()
