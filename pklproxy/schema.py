"""Schema for the GitHub REST API payloads we consume."""
import dataclasses
from collections.abc import Mapping
from datetime import datetime
from enum import Enum
from typing import Any

import marshmallow as ma
from marshmallow import fields, post_load


class RepositorySelection(Enum):
    """Which repositories of an account an installation covers."""

    all = "all"
    selected = "selected"


@dataclasses.dataclass(frozen=True, kw_only=True)
class Installation:
    """One deployment of the GitHub App onto one account."""

    id: int
    owner_login: str
    repository_selection: RepositorySelection | None = None


@dataclasses.dataclass(frozen=True, kw_only=True)
class ReleaseAsset:
    """A binary attached to a release."""

    name: str
    content_type: str | None
    # public link; requires browser auth for private repos
    download_url: str | None
    # API link; serves the bytes with 'Accept: application/octet-stream'
    api_url: str


@dataclasses.dataclass(frozen=True, kw_only=True)
class Release:
    tag_name: str | None
    assets: list[ReleaseAsset]

    def find_asset(self, name: str) -> ReleaseAsset | None:
        """First asset named exactly `name`, in the order GitHub lists them."""
        return next((a for a in self.assets if a.name == name), None)


@dataclasses.dataclass(frozen=True, kw_only=True)
class AccessToken:
    token: str
    expires_at: datetime | None


class AccountSchema(ma.Schema):
    """account field schema."""

    class Meta:
        unknown = ma.EXCLUDE

    login = fields.String(required=True)


class InstallationSchema(ma.Schema):
    """App installation schema."""

    class Meta:
        unknown = ma.EXCLUDE

    id = fields.Integer(required=True, strict=True)
    account = fields.Nested(AccountSchema, required=True)
    repository_selection = fields.Enum(
        RepositorySelection, by_value=True, load_default=None
    )

    @post_load
    def make_object(self, data: Mapping[str, Any], **_: Any) -> Installation:
        return Installation(
            id=data["id"],
            owner_login=data["account"]["login"],
            repository_selection=data["repository_selection"],
        )


class ReleaseAssetSchema(ma.Schema):
    """Release asset schema."""

    class Meta:
        unknown = ma.EXCLUDE

    name = fields.String(required=True)
    content_type = fields.String(load_default=None, allow_none=True)
    browser_download_url = fields.String(load_default=None, allow_none=True)
    url = fields.String(required=True)

    @post_load
    def make_object(self, data: Mapping[str, Any], **_: Any) -> ReleaseAsset:
        return ReleaseAsset(
            name=data["name"],
            content_type=data["content_type"],
            download_url=data["browser_download_url"],
            api_url=data["url"],
        )


class ReleaseSchema(ma.Schema):
    """Release (by tag) schema."""

    class Meta:
        unknown = ma.EXCLUDE

    tag_name = fields.String(load_default=None)
    assets = fields.Nested(ReleaseAssetSchema, many=True, load_default=list)

    @post_load
    def make_object(self, data: Mapping[str, Any], **_: Any) -> Release:
        return Release(**data)


class AccessTokenSchema(ma.Schema):
    """Installation access token schema."""

    class Meta:
        unknown = ma.EXCLUDE

    token = fields.String(required=True)
    expires_at = fields.AwareDateTime(
        load_default=None, default_timezone=None
    )

    @post_load
    def make_object(self, data: Mapping[str, Any], **_: Any) -> AccessToken:
        return AccessToken(**data)


installation_schema = InstallationSchema()
installation_list_schema = InstallationSchema(many=True)
release_schema = ReleaseSchema()
access_token_schema = AccessTokenSchema()
