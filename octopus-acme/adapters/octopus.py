# octopus-acme/adapters/octopus.py
import logging
import requests
from urllib.parse import quote

logger = logging.getLogger(__name__)


class OctopusError(RuntimeError):
    """Raised when the deployment server is unreachable or answers with a non-2xx status."""
    def __init__(self, message: str, url: str, status_code: int | None = None, body: str = ""):
        super().__init__(message)
        self.url = url
        self.status_code = status_code
        self.body = body


def _error_body(r: requests.Response | None) -> str:
    """Best-effort extraction of the server's error text (ErrorMessage + Errors, else raw body)."""
    if r is None:
        return ""
    try:
        j = r.json()
    except ValueError:
        return r.text or ""
    if isinstance(j, dict) and ("ErrorMessage" in j or "Errors" in j):
        parts = [j.get("ErrorMessage") or ""]
        parts += [str(e) for e in (j.get("Errors") or [])]
        return "\n".join(p for p in parts if p)
    return r.text or ""


class Octopus:
    """
    Deployment-server REST adapter for the certificate store of one space:
      - Search certificates:  GET  /api/<space>/certificates?search=<domain>
      - Create certificate:   POST /api/<space>/certificates
      - Replace certificate:  POST /api/<space>/certificates/<id>/replace
    Auth is the X-Octopus-ApiKey header.
    """
    def __init__(self, server_uri: str, api_key: str, space: str = "Spaces-1", timeout: float = 30):
        self.base = server_uri.rstrip("/")
        self.space = space
        self.timeout = timeout
        self.s = requests.Session()
        self.s.headers.update({"X-Octopus-ApiKey": api_key, "Accept": "application/json"})

    # ---------- HTTP helpers ----------
    def _u(self, p: str) -> str:
        return f"{self.base}/api/{quote(self.space, safe='')}{p}"

    def _send(self, method: str, p: str, **kw):
        url = self._u(p)
        logger.debug("%s %s", method, url)
        try:
            r = self.s.request(method, url, timeout=self.timeout, **kw)
        except requests.exceptions.RequestException as e:
            raise OctopusError(f"{method} {url} failed: {e}", url) from e
        if not r.ok:
            raise OctopusError(f"{method} {url} returned {r.status_code}", url,
                               status_code=r.status_code, body=_error_body(r))
        if not r.text:
            return {}
        try:
            return r.json()
        except ValueError as e:
            raise OctopusError(f"{method} {url} returned non-JSON", url,
                               status_code=r.status_code, body=r.text) from e

    def _get(self, p: str, params: dict | None = None):
        return self._send("GET", p, params=params)

    def _post(self, p: str, body: dict):
        return self._send("POST", p, json=body)

    # ---------- certificate store ----------
    def search_certificates(self, domain: str) -> list[dict]:
        """Return the raw records the server matches for `domain`, walking every page of `Items`."""
        items = []
        while True:
            obj = self._get("/certificates", params={"search": domain, "skip": len(items)})
            if not isinstance(obj, dict):
                return items + (obj or [])
            page = obj.get("Items", []) or []
            items += page
            if not page or "Page.Next" not in (obj.get("Links") or {}):
                return items

    def create_certificate(self, body: dict) -> dict:
        return self._post("/certificates", body)

    def replace_certificate(self, cert_id: str, body: dict) -> dict:
        return self._post(f"/certificates/{quote(cert_id, safe='')}/replace", body)
