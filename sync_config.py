#!/usr/bin/env python3
"""
Configuration for the Shopware image sync, read from environment variables.

Required environment variables:
    - SHOPWARE_API_URL (e.g. https://shop.example.com)
    - SHOPWARE_CLIENT_ID (integration access key)
    - SHOPWARE_CLIENT_SECRET (integration secret)
    - OPENAI_API_KEY
    - SALES_CHANNEL_ID
"""

import os
from dataclasses import dataclass
from typing import Mapping, Optional

from sync_errors import ConfigError

REQUIRED_VARIABLES = [
    "SHOPWARE_API_URL",
    "SHOPWARE_CLIENT_ID",
    "SHOPWARE_CLIENT_SECRET",
    "OPENAI_API_KEY",
    "SALES_CHANNEL_ID",
]


@dataclass(frozen=True)
class SyncConfig:
    """Credentials and scope for one sync run."""
    shopware_api_url: str
    shopware_client_id: str
    shopware_client_secret: str
    openai_api_key: str
    sales_channel_id: str


def load_config(environ: Optional[Mapping[str, str]] = None) -> SyncConfig:
    """
    Build SyncConfig from environment variables.

    Raises:
        ConfigError: If any required variable is missing or empty
    """
    if environ is None:
        environ = os.environ

    missing = [name for name in REQUIRED_VARIABLES if not environ.get(name)]
    if missing:
        raise ConfigError(f"Missing required environment variables: {', '.join(missing)}")

    return SyncConfig(
        shopware_api_url=environ["SHOPWARE_API_URL"].rstrip("/"),
        shopware_client_id=environ["SHOPWARE_CLIENT_ID"],
        shopware_client_secret=environ["SHOPWARE_CLIENT_SECRET"],
        openai_api_key=environ["OPENAI_API_KEY"],
        sales_channel_id=environ["SALES_CHANNEL_ID"],
    )
