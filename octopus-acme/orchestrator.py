# octopus-acme/orchestrator.py
import re
import base64
import logging
from datetime import datetime, timedelta, timezone
from adapters.octopus import Octopus
from adapters.acme import AcmeClient
from models import Settings, IssuedCertificate

logger = logging.getLogger(__name__)

PKCS12 = "Pkcs12"

# run() outcomes
PUBLISHED = "published"
REPLACED = "replaced"
CURRENT = "current"
PLANNED = "planned"


def _parse_iso(ts: str | None) -> datetime | None:
    if not ts:
        return None
    s = ts.strip()
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    # 3.10 fromisoformat only takes 3 or 6 fractional digits; .NET emits 7
    s = re.sub(r"\.(\d+)", lambda m: "." + (m.group(1) + "000000")[:6], s, count=1)
    try:
        dt = datetime.fromisoformat(s)
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def is_expiring(record: dict, days: int, now: datetime | None = None) -> bool:
    """True when NotAfter falls on or before now + days. Missing/unreadable dates count as expiring."""
    not_after = _parse_iso(record.get("NotAfter"))
    if not_after is None:
        return True
    now = now or datetime.now(timezone.utc)
    return not_after <= now + timedelta(days=days)


def matches(record: dict, domain: str, issuer: str) -> bool:
    if record.get("SubjectCommonName") != domain or record.get("IssuerCommonName") != issuer:
        return False
    return not (record.get("Archived") or record.get("ReplacedBy"))


def _pfx_b64(path: str) -> str:
    with open(path, "rb") as f:
        return base64.b64encode(f.read()).decode("ascii")


def build_create_payload(name: str, cert: IssuedCertificate) -> dict:
    return {
        "Name": name,
        "CertificateData": {"HasValue": True, "NewValue": _pfx_b64(cert.pfx_path)},
        "Password": {"HasValue": True, "NewValue": cert.password},
    }


def build_replace_payload(cert: IssuedCertificate) -> dict:
    return {
        "CertificateData": _pfx_b64(cert.pfx_path),
        "Password": cert.password,
    }


class Renewer:
    def __init__(self, settings: Settings, octopus: Octopus, acme: AcmeClient):
        self.settings = settings
        self.octopus = octopus
        self.acme = acme

    # ------------------ LOOKUP ------------------
    def find_existing(self) -> list[dict]:
        s = self.settings
        found = self.octopus.search_certificates(s.domain)
        recs = [r for r in found if matches(r, s.domain, s.issuer_name)]
        logger.info("Found %d certificate(s) for %s issued by %s (%d returned by search)",
                    len(recs), s.domain, s.issuer_name, len(found))
        return recs

    def expiring(self, records: list[dict], now: datetime | None = None) -> list[dict]:
        return [r for r in records if is_expiring(r, self.settings.expiry_days, now)]

    # ------------------ ISSUE ------------------
    def _issue(self) -> IssuedCertificate:
        s = self.settings
        return self.acme.issue(s.domain, s.email, s.aws_access_key, s.aws_secret_key,
                               s.pfx_password, staging=s.staging, key_type=s.key_type)

    # ------------------ PUBLISH / REPLACE ------------------
    def publish(self) -> dict:
        cert = self._issue()
        res = self.octopus.create_certificate(build_create_payload(self.settings.domain, cert))
        logger.info("Published new certificate %s for %s", res.get("Id", "?"), self.settings.domain)
        return res

    def replace(self, record: dict) -> dict:
        cert = self._issue()
        res = self.octopus.replace_certificate(record["Id"], build_replace_payload(cert))
        logger.info("Replaced certificate %s for %s", record["Id"], self.settings.domain)
        return res

    # ------------------ whole run ------------------
    def run(self, now: datetime | None = None) -> str:
        s = self.settings
        recs = self.find_existing()

        if not recs:
            logger.info("No existing certificate for %s", s.domain)
            if s.dry_run:
                logger.info("Dry run: would issue and publish a new certificate")
                return PLANNED
            self.publish()
            return PUBLISHED

        exp = self.expiring(recs, now)
        if not exp:
            logger.info("Certificate for %s is valid for more than %d days; nothing to do",
                        s.domain, s.expiry_days)
            return CURRENT
        for r in exp:
            logger.info("Certificate %s expires %s", r.get("Id"), r.get("NotAfter"))

        target = next((r for r in recs if r.get("CertificateDataFormat") == PKCS12), None)
        if target is None:
            logger.warning("No %s record among matches for %s; publishing a new certificate", PKCS12, s.domain)
            if s.dry_run:
                logger.info("Dry run: would issue and publish a new certificate")
                return PLANNED
            self.publish()
            return PUBLISHED

        skipped = [r.get("Id") for r in exp if r is not target]
        if skipped:
            logger.info("Only %s is replaced; leaving %s", target["Id"], ", ".join(map(str, skipped)))
        if s.dry_run:
            logger.info("Dry run: would renew and replace %s", target["Id"])
            return PLANNED
        self.replace(target)
        return REPLACED
