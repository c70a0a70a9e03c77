# octopus-acme/adapters/acme.py
import os
import re
import shlex
import shutil
import logging
import subprocess
from datetime import datetime
from urllib.parse import urlparse
from models import ACME_SERVERS, IssuedCertificate

logger = logging.getLogger(__name__)

KEY_LENGTHS = {"EC256": "ec-256", "EC384": "ec-384",
               "RSA2048": "2048", "RSA3072": "3072", "RSA4096": "4096"}


class AcmeError(RuntimeError):
    """Raised when acme.sh exits non-zero; carries its captured output."""
    def __init__(self, message: str, raw_out: str = "", raw_err: str = "", directory_url: str | None = None):
        super().__init__(message)
        self.raw_out = raw_out
        self.raw_err = raw_err
        self.directory_url = directory_url


class AcmeRateLimitError(AcmeError):
    """Raised when the ACME provider rate-limits duplicate certificates for the same SAN set."""
    def __init__(self, next_retry_iso: str | None, directory_url: str | None, raw_out: str, raw_err: str):
        super().__init__("ACME_RATE_LIMIT", raw_out, raw_err, directory_url)
        self.next_retry_iso = next_retry_iso


def _extract_retry_after_iso(acme_out_err_text: str) -> str | None:
    m = re.search(r"retry after\s+([0-9]{4}-[0-9]{2}-[0-9]{2}\s+[0-9]{2}:[0-9]{2}:[0-9]{2})\s+UTC", acme_out_err_text, re.I)
    if not m:
        return None
    try:
        dt = datetime.strptime(m.group(1), "%Y-%m-%d %H:%M:%S")
    except ValueError:
        return None
    return dt.strftime("%Y-%m-%dT%H:%M:%SZ")


def server_for(staging: bool) -> str:
    return ACME_SERVERS["staging" if staging else "production"]


class AcmeClient:
    """
    acme.sh wrapper for DNS-01 issuance through the Route 53 plugin (dns_aws).

    Honors:
      - ACME_HOME   acme.sh state directory (accounts, orders, issued certs)
      - ACME_DEBUG  1/true/yes -> pass --debug 2

    acme.sh only takes the PKCS#12 password on its command line, so it is visible in
    the process list while --to-pkcs12 runs. It is masked in logs and error messages only.
    """
    def __init__(self, acme_sh: str = "/usr/local/bin/acme.sh", home: str | None = None,
                 debug: str | None = None):
        self.acme_sh = acme_sh
        self.home = home or os.getenv("ACME_HOME", "/opt/acme")
        self.debug = debug if debug is not None else os.getenv("ACME_DEBUG", "0")

    def _acme(self, *args: str) -> list[str]:
        argv = [self.acme_sh, "--home", self.home, *args]
        if str(self.debug).lower() in ("1", "true", "yes"):
            argv += ["--debug", "2"]
        return argv

    # ------------------ accounts ------------------
    def account_dir(self, server: str) -> str:
        u = urlparse(server)
        return os.path.join(self.home, "ca", u.netloc, *[p for p in u.path.split("/") if p])

    def reset_account(self, server: str, email: str):
        """Drop any local registration for `server` and register a fresh account."""
        adir = self.account_dir(server)
        if os.path.isdir(adir):
            logger.info("Removing existing ACME account state at %s", adir)
            shutil.rmtree(adir)
        _run(self._acme("--register-account", "--server", server, "-m", email), directory_url=server)

    # ------------------ ISSUE ------------------
    def cert_dir(self, domain: str, key_type: str = "RSA2048") -> str:
        suffix = "_ecc" if key_type.upper().startswith("EC") else ""
        return os.path.join(self.home, f"{domain}{suffix}")

    def issue(self, domain: str, email: str, aws_access_key: str, aws_secret_key: str,
              password: str, staging: bool = False, key_type: str = "RSA2048") -> IssuedCertificate:
        server = server_for(staging)
        logger.info("Requesting certificate for %s from %s", domain, server)
        self.reset_account(server, email)

        env = dict(os.environ, AWS_ACCESS_KEY_ID=aws_access_key, AWS_SECRET_ACCESS_KEY=aws_secret_key)
        keylength = KEY_LENGTHS.get(key_type.upper(), "2048")
        _run(self._acme("--issue", "--server", server, "--dns", "dns_aws",
                        "-d", domain, "--accountemail", email,
                        "--keylength", keylength, "--force"),
             env=env, directory_url=server)

        _run(self._acme("--to-pkcs12", "-d", domain, "--password", password,
                        *(["--ecc"] if keylength.startswith("ec-") else [])),
             secrets=(password,), directory_url=server)

        pfx = os.path.join(self.cert_dir(domain, key_type), f"{domain}.pfx")
        if not os.path.isfile(pfx):
            raise AcmeError(f"acme.sh reported success but no PFX found at {pfx}", directory_url=server)
        logger.info("Issued certificate for %s -> %s", domain, pfx)
        return IssuedCertificate(domain=domain, pfx_path=pfx, password=password)


# ------------------ module-level helpers ------------------
def _mask(args: list[str], secrets=()) -> str:
    return " ".join("****" if a in secrets else shlex.quote(a) for a in args)


def _run(args: list[str], env: dict | None = None, secrets=(), directory_url: str | None = None) -> str:
    cmd = _mask(args, secrets)
    logger.debug("Running %s", cmd)
    try:
        p = subprocess.run(args, capture_output=True, text=True, shell=False, env=env)
    except OSError as e:
        raise AcmeError(f"acme.sh could not be started: {e}", directory_url=directory_url) from e
    if p.returncode != 0:
        txt = (p.stderr or "") + (p.stdout or "")
        if ("acme:error:rateLimited" in txt) or ("too many certificates" in txt):
            raise AcmeRateLimitError(_extract_retry_after_iso(txt), directory_url, p.stdout or "", p.stderr or "")
        raise AcmeError(f"acme.sh cmd failed (exit {p.returncode}): {cmd}",
                        p.stdout or "", p.stderr or "", directory_url)
    return p.stdout
