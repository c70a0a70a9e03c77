"""Tests for the acme.sh wrapper."""

import os
import subprocess
from unittest.mock import patch

import pytest

from adapters.acme import (
    AcmeClient,
    AcmeError,
    AcmeRateLimitError,
    _extract_retry_after_iso,
    server_for,
)
from models import ACME_SERVERS


def _ok(stdout=""):
    return subprocess.CompletedProcess([], 0, stdout=stdout, stderr="")


def _fail(stdout="", stderr="", rc=1):
    return subprocess.CompletedProcess([], rc, stdout=stdout, stderr=stderr)


@pytest.fixture
def client(tmp_path):
    return AcmeClient(acme_sh="acme.sh", home=str(tmp_path), debug="0")


@pytest.fixture
def issued_pfx(tmp_path):
    d = tmp_path / "example.com"
    d.mkdir()
    (d / "example.com.pfx").write_bytes(b"pfx")
    return d / "example.com.pfx"


def test_server_selection():
    assert server_for(True) == ACME_SERVERS["staging"]
    assert server_for(False) == ACME_SERVERS["production"]
    assert "staging" in server_for(True)


def test_debug_flag_appends_debug_level(tmp_path):
    c = AcmeClient(acme_sh="acme.sh", home=str(tmp_path), debug="true")
    assert c._acme("--version")[-2:] == ["--debug", "2"]


def test_account_dir_follows_directory_url(client, tmp_path):
    assert client.account_dir(ACME_SERVERS["staging"]) == str(
        tmp_path / "ca" / "acme-staging-v02.api.letsencrypt.org" / "directory")


def test_reset_account_clobbers_existing_registration(client):
    server = ACME_SERVERS["production"]
    adir = client.account_dir(server)
    os.makedirs(adir)
    with open(os.path.join(adir, "account.key"), "w") as f:
        f.write("stale")

    with patch("adapters.acme.subprocess.run", return_value=_ok()) as run:
        client.reset_account(server, "ops@example.com")

    assert not os.path.exists(adir)
    argv = run.call_args.args[0]
    assert "--register-account" in argv
    assert argv[argv.index("--server") + 1] == server
    assert argv[argv.index("-m") + 1] == "ops@example.com"


def test_issue_runs_dns_challenge_and_exports_pfx(client, issued_pfx):
    with patch("adapters.acme.subprocess.run", return_value=_ok()) as run:
        cert = client.issue("example.com", "ops@example.com", "AKIA", "SECRET", "pw", staging=True)

    assert cert.pfx_path == str(issued_pfx)
    assert cert.password == "pw"
    assert run.call_count == 3

    register, issue, export = (c.args[0] for c in run.call_args_list)
    assert "--register-account" in register
    assert issue[issue.index("--dns") + 1] == "dns_aws"
    assert issue[issue.index("--server") + 1] == ACME_SERVERS["staging"]
    assert issue[issue.index("-d") + 1] == "example.com"
    assert issue[issue.index("--keylength") + 1] == "2048"
    assert "--to-pkcs12" in export
    assert export[export.index("--password") + 1] == "pw"

    env = run.call_args_list[1].kwargs["env"]
    assert env["AWS_ACCESS_KEY_ID"] == "AKIA"
    assert env["AWS_SECRET_ACCESS_KEY"] == "SECRET"


def test_ec_keys_live_in_ecc_dir(client, tmp_path):
    d = tmp_path / "example.com_ecc"
    d.mkdir()
    (d / "example.com.pfx").write_bytes(b"pfx")

    with patch("adapters.acme.subprocess.run", return_value=_ok()) as run:
        cert = client.issue("example.com", "ops@example.com", "A", "S", "pw", key_type="EC256")

    assert cert.pfx_path == str(d / "example.com.pfx")
    assert "--ecc" in run.call_args_list[2].args[0]


def test_issue_failure_carries_output(client):
    with patch("adapters.acme.subprocess.run",
               side_effect=[_ok(), _fail(stdout="Verify error", stderr="dns timeout")]) as run:
        with pytest.raises(AcmeError) as exc:
            client.issue("example.com", "ops@example.com", "A", "S", "pw")

    assert exc.value.raw_out == "Verify error"
    assert exc.value.raw_err == "dns timeout"
    assert run.call_count == 2


def test_rate_limit_is_reported(client):
    out = ("Create new order error. urn:ietf:params:acme:error:rateLimited "
           "too many certificates already issued: retry after 2026-10-20 08:15:00 UTC")
    with patch("adapters.acme.subprocess.run", side_effect=[_ok(), _fail(stdout=out)]):
        with pytest.raises(AcmeRateLimitError) as exc:
            client.issue("example.com", "ops@example.com", "A", "S", "pw")

    assert exc.value.next_retry_iso == "2026-10-20T08:15:00Z"
    assert exc.value.directory_url == ACME_SERVERS["production"]


def test_missing_pfx_is_an_error(client):
    with patch("adapters.acme.subprocess.run", return_value=_ok()):
        with pytest.raises(AcmeError, match="no PFX"):
            client.issue("example.com", "ops@example.com", "A", "S", "pw")


def test_missing_executable(client):
    with patch("adapters.acme.subprocess.run", side_effect=FileNotFoundError("acme.sh")):
        with pytest.raises(AcmeError, match="could not be started"):
            client.reset_account(ACME_SERVERS["production"], "ops@example.com")


def test_password_is_masked_in_error(client):
    with patch("adapters.acme.subprocess.run", side_effect=[_ok(), _ok(), _fail()]):
        with pytest.raises(AcmeError) as exc:
            client.issue("example.com", "ops@example.com", "A", "S", "hunter2")
    assert "hunter2" not in str(exc.value)


def test_retry_after_without_timestamp():
    assert _extract_retry_after_iso("rateLimited, try later") is None
