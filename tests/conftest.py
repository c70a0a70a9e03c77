"""Pytest configuration and shared fixtures."""

from unittest.mock import MagicMock

import pytest

from adapters.octopus import Octopus
from models import IssuedCertificate, Settings

OCTO = "https://octopus.example.test"
CERTS_URL = f"{OCTO}/api/Spaces-1/certificates"


@pytest.fixture
def settings():
    """Production settings for example.com."""
    return Settings(
        domain="example.com",
        email="ops@example.com",
        aws_access_key="AKIAEXAMPLE",
        aws_secret_key="secret",
        api_key="API-TEST",
        pfx_password="pfx-pass",
        server_uri=OCTO,
    )


@pytest.fixture
def pfx_file(tmp_path):
    path = tmp_path / "example.com.pfx"
    path.write_bytes(b"\x30\x82PFXDATA")
    return path


@pytest.fixture
def issued(pfx_file):
    return IssuedCertificate(domain="example.com", pfx_path=str(pfx_file), password="pfx-pass")


@pytest.fixture
def octopus():
    return Octopus(OCTO, "API-TEST")


@pytest.fixture
def mock_acme(issued):
    """AcmeClient stand-in whose issue() returns the sample PFX."""
    acme = MagicMock()
    acme.issue.return_value = issued
    return acme


def make_record(cert_id="Certificates-1", not_after="2099-01-01T00:00:00+00:00",
                issuer="R3", subject="example.com", fmt="Pkcs12", **extra):
    rec = {
        "Id": cert_id,
        "Name": subject,
        "SubjectCommonName": subject,
        "IssuerCommonName": issuer,
        "NotAfter": not_after,
        "CertificateDataFormat": fmt,
        "Archived": None,
        "ReplacedBy": None,
    }
    rec.update(extra)
    return rec
