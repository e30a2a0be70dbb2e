"""
Endpoint record models.
"""

import httpx
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


class Endpoint(BaseModel):
    """A named upstream plus the account credited for its use.

    Records written by older deployments use capitalised keys
    (``Id``, ``Url``, ``Address``); both spellings decode.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1, validation_alias=AliasChoices("id", "Id"))
    url: str = Field(min_length=1, validation_alias=AliasChoices("url", "Url"))
    address: str = Field(min_length=1, validation_alias=AliasChoices("address", "Address"))

    def encode(self) -> bytes:
        return self.model_dump_json().encode("utf-8")

    @classmethod
    def decode(cls, raw: bytes) -> "Endpoint":
        return cls.model_validate_json(raw)


class EndpointUpdate(BaseModel):
    """Body of the administrative endpoint write."""

    url: str = Field(min_length=1)
    address: str = Field(min_length=1)

    @field_validator("url")
    @classmethod
    def _absolute_http_url(cls, value: str) -> str:
        try:
            url = httpx.URL(value)
        except httpx.InvalidURL as exc:
            raise ValueError(f"invalid URL: {exc}") from exc
        # httpx percent-encodes characters that are not valid in a host name
        if url.scheme not in ("http", "https") or not url.host or "%" in url.host:
            raise ValueError("url must be an absolute http or https URL")
        return value
