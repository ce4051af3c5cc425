"""Resource naming utilities for the Kubernetes runtime."""

import hashlib
import re

from chaldeploy.config import Config

# DNS-1123 label limit for namespace names
MAX_NAME_LENGTH = 63
MAX_LABEL_VALUE_LENGTH = 63

_CHALLENGE_DIGEST_LENGTH = 10
_TEAM_DIGEST_LENGTH = 8

_NAME_ILLEGAL = re.compile(r"[^a-z0-9]+")
_LABEL_ILLEGAL = re.compile(r"[^A-Za-z0-9_.-]+")


def hash_string(value: str, length: int) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()[:length]


class ResourceNaming:
    """Centralized naming conventions for cluster objects.

    Names are derived only from the challenge identity and the team id, so
    the same team always maps to the same namespace and deployment.
    """

    def __init__(self, config: Config) -> None:
        self._prefix = config.runtime.resource_prefix
        self._label_domain = config.runtime.label_domain
        self._managed_by = config.runtime.managed_by
        self._challenge_hash = hash_string(config.challenge.name, _CHALLENGE_DIGEST_LENGTH)

    @property
    def challenge_hash(self) -> str:
        return self._challenge_hash

    @property
    def managed_by(self) -> str:
        return self._managed_by

    def resource_name(self, team_id: str) -> str:
        """Namespace/deployment name for a team.

        The readable slug loses case and punctuation; the trailing digest of
        the raw team id keeps "T-100" and "T100" apart.
        """
        digest = hash_string(team_id, _TEAM_DIGEST_LENGTH)
        head = f"{self._prefix}{self._challenge_hash}"
        room = MAX_NAME_LENGTH - len(head) - len(digest) - 2
        slug = _NAME_ILLEGAL.sub("", team_id.lower())[: max(room, 0)]
        if not slug:
            return f"{head}-{digest}"
        return f"{head}-{slug}-{digest}"

    def namespace_name(self, team_id: str) -> str:
        return self.resource_name(team_id)

    def label_key(self, key: str) -> str:
        return f"{self._label_domain}/{key}"

    @staticmethod
    def label_value(value: str) -> str:
        """Coerce an arbitrary string into a legal label value."""
        cleaned = _LABEL_ILLEGAL.sub("", value)[:MAX_LABEL_VALUE_LENGTH]
        return cleaned.strip("-_.")
