# octopus-acme/models.py
from typing import Optional
from pydantic import BaseModel, Field, field_validator

# Default ACME directory URLs, selected by the staging flag
ACME_SERVERS = {
    "production": "https://acme-v02.api.letsencrypt.org/directory",
    "staging":    "https://acme-staging-v02.api.letsencrypt.org/directory",
}

# Intermediate CN the deployment server reports for certificates from each directory
ISSUERS = {
    "production": "R3",
    "staging":    "Fake LE Intermediate X1",
}

KEY_TYPES = ("EC256", "EC384", "RSA2048", "RSA3072", "RSA4096")


class Settings(BaseModel):
    domain: str = Field(min_length=1)
    email: str = Field(min_length=3)
    aws_access_key: str = Field(min_length=1)
    aws_secret_key: str = Field(min_length=1)
    api_key: str = Field(min_length=1)
    pfx_password: str = Field(min_length=1)
    server_uri: str = Field(min_length=1)
    space: str = "Spaces-1"
    expiry_days: int = Field(default=30, gt=0)
    staging: bool = False
    issuer: Optional[str] = None
    key_type: str = "RSA2048"
    acme_home: Optional[str] = None
    dry_run: bool = False

    @field_validator("key_type")
    @classmethod
    def _known_key_type(cls, v: str) -> str:
        v = v.upper()
        if v not in KEY_TYPES:
            raise ValueError(f"key_type must be one of {', '.join(KEY_TYPES)}")
        return v

    @property
    def environment(self) -> str:
        return "staging" if self.staging else "production"

    @property
    def issuer_name(self) -> str:
        return self.issuer or ISSUERS[self.environment]

    @property
    def acme_server(self) -> str:
        return ACME_SERVERS[self.environment]


class IssuedCertificate(BaseModel):
    domain: str
    pfx_path: str
    password: str
