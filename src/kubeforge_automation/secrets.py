from __future__ import annotations

import base64
import json
import logging
from typing import Any, Optional

import boto3

logger = logging.getLogger(__name__)


class SecretResolver:
    """Resolves ``{aws_secret = "...", key = "..."}`` references in host variables.

    Values are fetched from AWS Secrets Manager on first use and cached for
    the lifetime of the resolver. Region and profile come from the usual AWS
    environment, which the CLI seeds from ``[defaults]``.
    """

    def __init__(self):
        self._cache: dict[tuple[str, Optional[str]], Any] = {}
        self._client = None

    def resolve(self, values: dict[str, Any]) -> dict[str, Any]:
        return {k: self._resolve_value(v) for k, v in values.items()}

    def _resolve_value(self, value: Any) -> Any:
        if isinstance(value, dict):
            if "aws_secret" in value:
                return self._resolve_aws_secret(value)
            return {k: self._resolve_value(v) for k, v in value.items()}
        if isinstance(value, list):
            return [self._resolve_value(v) for v in value]
        return value

    def _secretsmanager(self):
        if self._client is None:
            self._client = boto3.client("secretsmanager")
        return self._client

    def _resolve_aws_secret(self, spec: dict[str, Any]) -> Any:
        name = str(spec["aws_secret"])
        key = spec.get("key")
        cache_key = (name, key if key is None else str(key))
        if cache_key in self._cache:
            return self._cache[cache_key]

        logger.debug("resolving secret=%s", name)
        response = self._secretsmanager().get_secret_value(SecretId=name)
        secret_str = response.get("SecretString")
        if secret_str is None:
            binary = response.get("SecretBinary")
            if binary is None:
                raise RuntimeError(f"Secret {name} has no SecretString or SecretBinary")
            secret_str = base64.b64decode(binary).decode()

        value: Any = secret_str
        if key is not None:
            try:
                payload = json.loads(secret_str)
            except json.JSONDecodeError:
                # Plain-text secrets have no structure to pick a key from.
                payload = None
            if isinstance(payload, dict):
                value = payload[str(key)]

        self._cache[cache_key] = value
        return value
