from __future__ import annotations

import os
from typing import Optional

from geoload.errors import ConfigError


def resolve_token(override: Optional[str] = None, cfg: Optional[dict] = None) -> str:
    """Pick the bearer token: explicit override, then XYZ_TOKEN, then config."""
    if override:
        return override
    env = os.getenv("XYZ_TOKEN")
    if env:
        return env
    token = ((cfg or {}).get("store") or {}).get("token")
    if token:
        return token
    raise ConfigError("no access token; pass --token, set XYZ_TOKEN or store.token in the config")
