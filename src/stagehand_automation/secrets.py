"""
Secrets Manager references for variable files.

A variable whose value is a table such as
``{ aws_secret = "registry/creds", key = "password" }`` is replaced with the
secret's value (or the named field of a JSON secret) when the file is loaded.
"""

from __future__ import annotations

import base64
import json
import logging
from dataclasses import dataclass
from typing import Any, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SecretReference:
    name: str
    key: Optional[str] = None

    @classmethod
    def from_table(cls, table: dict[str, Any]) -> "SecretReference":
        key = table.get("key")
        return cls(name=str(table["aws_secret"]), key=None if key is None else str(key))

    def __str__(self) -> str:
        return self.name if self.key is None else f"{self.name}#{self.key}"


class SecretResolver:
    """Walks variable mappings and swaps secret references for their values.

    Each secret is fetched at most once per resolver; the boto3 client is
    created on first use so files without references never touch AWS.
    """

    def __init__(self):
        self._fetched: dict[str, str] = {}
        self._client = None

    def resolve(self, values: dict[str, Any]) -> dict[str, Any]:
        return {name: self._walk(value) for name, value in values.items()}

    def _walk(self, value: Any) -> Any:
        if isinstance(value, list):
            return [self._walk(item) for item in value]
        if not isinstance(value, dict):
            return value
        if "aws_secret" in value:
            return self.lookup(SecretReference.from_table(value))
        return {k: self._walk(v) for k, v in value.items()}

    def lookup(self, ref: SecretReference) -> Any:
        text = self._secret_text(ref.name)
        if ref.key is None:
            return text
        try:
            return json.loads(text)[ref.key]
        except json.JSONDecodeError:
            raise RuntimeError(f"secret {ref.name} is not JSON; cannot read key '{ref.key}'") from None
        except (KeyError, TypeError):
            raise RuntimeError(f"secret {ref.name} has no key '{ref.key}'") from None

    def _secret_text(self, name: str) -> str:
        if name not in self._fetched:
            logger.debug("fetching secret=%s", name)
            try:
                response = self._secretsmanager().get_secret_value(SecretId=name)
            except (BotoCoreError, ClientError) as exc:
                raise RuntimeError(f"cannot read secret {name}: {exc}") from exc
            text = response.get("SecretString")
            if text is None:
                blob = response.get("SecretBinary")
                if blob is None:
                    raise RuntimeError(f"secret {name} has neither SecretString nor SecretBinary")
                text = base64.b64decode(blob).decode()
            self._fetched[name] = text
        return self._fetched[name]

    def _secretsmanager(self):
        if self._client is None:
            self._client = boto3.client("secretsmanager")
        return self._client
