#!/usr/bin/env python3
"""
Shopware 6 Admin API client

Handles client-credentials authentication, paginated product search and the
media upload / cover assignment protocol:

    1. create media entity (ID generated client-side)
    2. upload raw image bytes to that media entity
    3. create product-media association, then set it as the product cover

No step is retried and nothing is rolled back: a media entity left behind by a
failed later step is harmless, since it is not linked to any product.
"""

import logging
import time
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Optional

import requests

from sync_errors import (
    AuthError,
    CatalogProtocolError,
    CatalogQueryError,
    NotAuthenticatedError,
)

# Products per search request
PAGE_SIZE = 25

# Shopware access tokens are valid for 10 minutes unless the response says otherwise
DEFAULT_TOKEN_LIFETIME = 600

PRODUCT_FIELDS = [
    "id",
    "name",
    "description",
    "productNumber",
    "coverId",
    "cover",
    "translated",
]


class UploadStage(Enum):
    """How far a cover upload got."""
    NONE = 0
    CREATED = 1
    UPLOADED = 2
    ASSOCIATED = 3
    COVER_SET = 4


@dataclass
class AuthSession:
    """Shopware bearer token."""
    access_token: str
    expires_at: float  # Unix timestamp
    token_type: str = "Bearer"

    def is_expired(self, buffer_seconds: int = 0) -> bool:
        return time.time() >= (self.expires_at - buffer_seconds)

    @classmethod
    def from_token_response(cls, data: dict) -> "AuthSession":
        return cls(
            access_token=data["access_token"],
            expires_at=time.time() + data.get("expires_in", DEFAULT_TOKEN_LIFETIME),
            token_type=data.get("token_type", "Bearer"),
        )


@dataclass
class CatalogItem:
    """Product snapshot as returned by the search API."""
    id: str
    name: str
    description: Optional[str]
    product_number: str
    cover_id: Optional[str] = None

    @property
    def lacks_image(self) -> bool:
        return not self.cover_id

    @classmethod
    def from_api(cls, data: dict) -> "CatalogItem":
        # Variants and non-default languages carry their values under "translated"
        translated = data.get("translated") or {}
        return cls(
            id=data["id"],
            name=translated.get("name") or data.get("name") or "",
            description=translated.get("description") or data.get("description"),
            product_number=data.get("productNumber") or "",
            cover_id=data.get("coverId"),
        )


@dataclass
class SearchPage:
    """One page of a product search."""
    items: list[CatalogItem]
    total: int


@dataclass
class CoverAssignment:
    """Outcome of a successful upload_and_assign_cover() call."""
    media_id: str
    product_media_id: str
    stage: UploadStage = UploadStage.COVER_SET


def new_media_id() -> str:
    """Shopware IDs are 32 lowercase hex characters without dashes."""
    return uuid.uuid4().hex


class ShopwareClient:
    """Shopware 6 Admin API client for product cover images."""

    def __init__(self, api_url: str, client_id: str, client_secret: str):
        """
        Initialize the client.

        Args:
            api_url: Shop base URL (without /api)
            client_id: Integration access key ID
            client_secret: Integration secret access key
        """
        self.api_url = api_url.rstrip("/")
        self.client_id = client_id
        self.client_secret = client_secret
        self._session: Optional[AuthSession] = None

    @property
    def session(self) -> AuthSession:
        if self._session is None:
            raise NotAuthenticatedError()
        return self._session

    def authenticate(self) -> AuthSession:
        """
        Exchange client credentials for a bearer token.

        Raises:
            AuthError: If Shopware rejects the credentials or sends no token
        """
        response = requests.request(
            "POST",
            f"{self.api_url}/api/oauth/token",
            headers={"Accept": "application/json"},
            json={
                "grant_type": "client_credentials",
                "client_id": self.client_id,
                "client_secret": self.client_secret,
            },
        )

        if not response.ok:
            raise AuthError(response.status_code, response.text)

        try:
            token_data = response.json()
        except ValueError:
            raise AuthError(response.status_code, response.text)
        if not isinstance(token_data, dict) or not token_data.get("access_token"):
            raise AuthError(response.status_code, response.text)

        self._session = AuthSession.from_token_response(token_data)
        logging.info("Authenticated with Shopware at %s", self.api_url)
        return self._session

    def _headers(self, content_type: str = "application/json") -> dict:
        """Headers for authenticated requests."""
        return {
            "Authorization": f"{self.session.token_type} {self.session.access_token}",
            "Content-Type": content_type,
            "Accept": "application/json",
        }

    def _request(
        self,
        method: str,
        endpoint: str,
        json: Optional[dict] = None,
        data: Optional[bytes] = None,
        params: Optional[dict] = None,
        content_type: str = "application/json",
    ) -> requests.Response:
        """Make authenticated API request. Status handling is left to the caller."""
        headers = self._headers(content_type)
        return requests.request(
            method,
            f"{self.api_url}/api/{endpoint}",
            headers=headers,
            json=json,
            data=data,
            params=params,
        )

    def search_page(self, channel_id: str, page: int) -> SearchPage:
        """
        Fetch one page of products visible in a sales channel.

        Raises:
            CatalogQueryError: On any non-success response
        """
        body = {
            "limit": PAGE_SIZE,
            "page": page,
            "filter": [
                {
                    "type": "equals",
                    "field": "visibilities.salesChannelId",
                    "value": channel_id,
                },
            ],
            "associations": {
                "cover": {},
            },
            "includes": {
                "product": PRODUCT_FIELDS,
            },
        }

        response = self._request("POST", "search/product", json=body)
        if not response.ok:
            raise CatalogQueryError(response.status_code, response.text)

        payload = response.json()
        items = [CatalogItem.from_api(row) for row in payload.get("data", [])]
        return SearchPage(items=items, total=int(payload.get("total", 0)))

    def list_items_missing_image(self, channel_id: str) -> tuple[int, list[CatalogItem]]:
        """
        Fetch every product in the channel and keep those without a cover.

        Stops once the reported total is reached or a short page comes back.

        Returns:
            Tuple of (number of products fetched, products without a cover)

        Raises:
            CatalogQueryError: If any page fails; no partial listing is returned
        """
        products: list[CatalogItem] = []
        page = 1

        while True:
            result = self.search_page(channel_id, page)
            products.extend(result.items)
            logging.info("Fetched page %d: %d/%d products", page, len(products), result.total)

            if len(products) >= result.total or len(result.items) < PAGE_SIZE:
                break
            page += 1

        without_images = [p for p in products if p.lacks_image]
        return len(products), without_images

    def create_media(self) -> str:
        """Create an empty media entity and return its ID."""
        media_id = new_media_id()
        response = self._request("POST", "media", json={"id": media_id})
        if not response.ok:
            raise CatalogProtocolError("create_media", response.status_code, response.text, UploadStage.NONE)
        return media_id

    def upload_media_file(self, media_id: str, image_bytes: bytes, file_name: str) -> None:
        """Upload raw PNG bytes into an existing media entity."""
        response = self._request(
            "POST",
            f"_action/media/{media_id}/upload",
            data=image_bytes,
            params={"extension": "png", "fileName": file_name},
            content_type="image/png",
        )
        if not response.ok:
            raise CatalogProtocolError("upload", response.status_code, response.text, UploadStage.CREATED)

    def create_product_media(self, item_id: str, media_id: str) -> str:
        """Link a media entity to a product and return the association ID."""
        response = self._request("POST", "product-media", json={"productId": item_id, "mediaId": media_id})
        if not response.ok:
            raise CatalogProtocolError("associate", response.status_code, response.text, UploadStage.UPLOADED)

        # Shopware answers 204 with the new entity URL in the Location header
        location = response.headers.get("Location") or ""
        product_media_id = location.rstrip("/").rsplit("/", 1)[-1]
        if not product_media_id:
            raise CatalogProtocolError(
                "associate",
                response.status_code,
                "Failed to get product-media ID from response",
                UploadStage.UPLOADED,
            )
        return product_media_id

    def set_cover(self, item_id: str, product_media_id: str) -> None:
        """Point the product's cover at a product-media association."""
        response = self._request("PATCH", f"product/{item_id}", json={"coverId": product_media_id})
        if not response.ok:
            raise CatalogProtocolError("set_cover", response.status_code, response.text, UploadStage.ASSOCIATED)

    def upload_and_assign_cover(self, item_id: str, image_bytes: bytes, file_name: str) -> CoverAssignment:
        """
        Upload an image and make it the product's cover.

        Args:
            item_id: Product ID
            image_bytes: Raw PNG data
            file_name: Media file name (without extension)

        Returns:
            CoverAssignment with the new media and association IDs

        Raises:
            CatalogProtocolError: Naming the failed step and the stage reached
        """
        if self.session.is_expired():
            # Sessions are not refreshed mid-run; Shopware will most likely answer 401
            logging.warning("Shopware session expired before uploading cover for product %s", item_id)

        media_id = self.create_media()
        logging.info("Created media %s for product %s", media_id, item_id)

        self.upload_media_file(media_id, image_bytes, file_name)
        logging.info("Uploaded %d bytes to media %s", len(image_bytes), media_id)

        product_media_id = self.create_product_media(item_id, media_id)
        self.set_cover(item_id, product_media_id)
        logging.info("Set cover of product %s to product-media %s", item_id, product_media_id)

        return CoverAssignment(media_id=media_id, product_media_id=product_media_id)
