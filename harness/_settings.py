"""Harness settings, read from environ (optionally filled by a local .env file)"""

from dataclasses import dataclass
import os
import re

from harness._logger import logger


def update_environ_with_local_env(path: str = ".env") -> None:
    # dynamically load .env file in environ if exists, it allow users to keep their conf via env vars
    try:
        with open(path, encoding="utf-8") as f:
            logger.debug("Found a .env file")
            for raw_line in f:
                line = raw_line.strip(" \t\n")
                line = re.sub(r"^(export +)(.*)$", r"\2", line)
                if line.startswith("#") or "=" not in line:
                    continue
                name, value = line.split("=", 1)
                logger.debug(f"adding {name} in environ")
                os.environ[name] = value

    except FileNotFoundError:
        pass


def _get_float(name: str, default: float | None) -> float | None:
    value = os.environ.get(name, "").strip()
    if not value:
        return default

    try:
        return float(value)
    except ValueError as e:
        raise ValueError(f"{name} must be a number of seconds, got {value!r}") from e


@dataclass(frozen=True)
class Settings:
    cosmos_endpoint: str | None = None
    cosmos_key: str | None = None
    database: str = "life"
    default_collection: str = "CollectionWithIdAsPartitionKey"
    non_default_pk_collection: str = "CollectionWitNonDefaultPartitionKey"

    proxy_cert: str | None = None

    delay_override: float | None = None
    ceiling: float | None = None
    budget_tolerance: float = 0.5

    @property
    def has_credentials(self) -> bool:
        return bool(self.cosmos_endpoint) and bool(self.cosmos_key)

    @classmethod
    def from_environ(cls) -> "Settings":
        return cls(
            cosmos_endpoint=os.environ.get("COSMOS_ENDPOINT") or None,
            cosmos_key=os.environ.get("COSMOS_KEY") or None,
            database=os.environ.get("COSMOS_DATABASE", cls.database),
            default_collection=os.environ.get("COSMOS_DEFAULT_COLLECTION", cls.default_collection),
            non_default_pk_collection=os.environ.get(
                "COSMOS_NON_DEFAULT_PK_COLLECTION", cls.non_default_pk_collection
            ),
            proxy_cert=os.environ.get("HARNESS_PROXY_CERT") or None,
            delay_override=_get_float("HARNESS_DELAY_SECONDS", None),
            ceiling=_get_float("HARNESS_CEILING_SECONDS", None),
            budget_tolerance=_get_float("HARNESS_BUDGET_TOLERANCE", cls.budget_tolerance),  # type: ignore[arg-type]
        )
