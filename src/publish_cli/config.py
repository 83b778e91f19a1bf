"""YAML configuration loader for the ``ens-publish`` command.

Values are merged with the precedence CLI flags > environment > file and then
parsed into dataclasses.  Parsing is the only place that validates them; the
core package receives a ready :class:`ens_publish.config.PublishConfig`.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml
from eth_account import Account
from eth_account.signers.local import LocalAccount

from ens_publish.config import FAR_FUTURE_EXPIRY, NETWORKS, NetworkProfile, PublishConfig, RetryPolicy
from ens_publish.errors import ConfigError
from ens_publish.names import checksum

DEFAULT_CONFIG_PATH = Path("ens-publish.yaml")

STORAGE_PROVIDERS = ("storacha", "kubo")

# Environment variable -> (section, key)
ENVIRONMENT: Dict[str, tuple] = {
    "DEPLOY_NETWORK": ("network", "name"),
    "RPC_URL": ("network", "rpc_url"),
    "ENS_DOMAIN": ("ens", "domain"),
    "SAFE_ADDRESS": ("governance", "safe_address"),
    "SAFE_API_KEY": ("governance", "api_key"),
    "SAFE_SERVICE_URL": ("governance", "service_url"),
    "OWNER_PRIVATE_KEY": ("signer", "private_key"),
    "KUBO_API_URL": ("storage", "kubo_api_url"),
}

TEMPLATE = """\
# ens-publish configuration
# Every value can also come from the environment or a CLI flag
# (precedence: flags > environment > this file).

network:
  name: sepolia                 # DEPLOY_NETWORK (mainnet | sepolia)
  rpc_url: https://ethereum-sepolia-rpc.publicnode.com   # RPC_URL
  timeout: 30

ens:
  domain: your-domain.eth       # ENS_DOMAIN, must be wrapped in the NameWrapper
  max_versions: 200
  lookahead: 1

governance:
  safe_address: "0x..."         # SAFE_ADDRESS
  # api_key: ...                # SAFE_API_KEY
  # service_url: ...            # SAFE_SERVICE_URL, defaults per network
  timeout: 30
  poll_interval: 15

signer:
  # Prefer OWNER_PRIVATE_KEY over storing the key here.
  # private_key: "0x..."

storage:
  provider: storacha            # storacha | kubo
  kubo_api_url: http://127.0.0.1:5001   # KUBO_API_URL
  timeout: 300

retry:
  attempts: 3
  base_delay: 1.0
  factor: 2.0
  jitter: 0.25
"""


@dataclass
class NetworkSettings:
    name: str = "sepolia"
    rpc_url: Optional[str] = None
    timeout: float = 30.0
    receipt_timeout: float = 300.0

    @property
    def profile(self) -> NetworkProfile:
        return NETWORKS[self.name]


@dataclass
class EnsSettings:
    domain: Optional[str] = None
    max_versions: int = 200
    lookahead: int = 1
    expiry: int = FAR_FUTURE_EXPIRY


@dataclass
class GovernanceSettings:
    safe_address: Optional[str] = None
    service_url: Optional[str] = None
    api_key: Optional[str] = field(default=None, repr=False)
    timeout: float = 30.0
    poll_interval: float = 15.0


@dataclass
class SignerSettings:
    private_key: Optional[str] = field(default=None, repr=False)

    def account(self) -> LocalAccount:
        if not self.private_key:
            raise ConfigError("signer.private_key is required (set OWNER_PRIVATE_KEY)")
        try:
            return Account.from_key(self.private_key)
        except (ValueError, TypeError) as exc:
            # The key itself must never end up in the message.
            raise ConfigError("signer.private_key is not a valid private key") from exc


@dataclass
class StorageSettings:
    provider: str = "storacha"
    kubo_api_url: str = "http://127.0.0.1:5001"
    timeout: float = 300.0


@dataclass
class CliConfig:
    network: NetworkSettings = field(default_factory=NetworkSettings)
    ens: EnsSettings = field(default_factory=EnsSettings)
    governance: GovernanceSettings = field(default_factory=GovernanceSettings)
    signer: SignerSettings = field(default_factory=SignerSettings)
    storage: StorageSettings = field(default_factory=StorageSettings)
    retry: RetryPolicy = field(default_factory=RetryPolicy)

    def require(self, *names: str) -> None:
        """Raise :class:`ConfigError` listing every dotted setting that is unset."""

        missing = []
        for name in names:
            section, key = name.split(".", 1)
            if not getattr(getattr(self, section), key):
                missing.append(name)
        if missing:
            raise ConfigError(
                f"missing required configuration: {', '.join(missing)}",
                hint="Provide them via CLI flags, environment variables or the config file "
                "(run 'ens-publish init' for a template).",
            )

    def to_publish_config(self) -> PublishConfig:
        self.require("ens.domain", "governance.safe_address")
        return PublishConfig(
            network=self.network.profile,
            parent_name=self.ens.domain,
            governance_address=self.governance.safe_address,
            expiry=self.ens.expiry,
            max_versions=self.ens.max_versions,
            lookahead=self.ens.lookahead,
            retry=self.retry,
        )


def _section(data: Mapping[str, Any], name: str) -> Dict[str, Any]:
    section = data.get(name) or {}
    if not isinstance(section, dict):
        raise ConfigError(f"'{name}' section must be a mapping")
    return section


def _positive(value: Any, name: str, cast=int):
    try:
        number = cast(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{name} must be a number, got {value!r}") from exc
    if number <= 0:
        raise ConfigError(f"{name} must be > 0, got {value!r}")
    return number


def _parse_network(section: Dict[str, Any]) -> NetworkSettings:
    name = str(section.get("name", "sepolia")).lower()
    if name not in NETWORKS:
        raise ConfigError(
            f"unsupported network '{name}' (expected one of: {', '.join(sorted(NETWORKS))})"
        )
    return NetworkSettings(
        name=name,
        rpc_url=section.get("rpc_url"),
        timeout=_positive(section.get("timeout", 30.0), "network.timeout", float),
        receipt_timeout=_positive(
            section.get("receipt_timeout", 300.0), "network.receipt_timeout", float
        ),
    )


def _parse_ens(section: Dict[str, Any]) -> EnsSettings:
    domain = section.get("domain")
    if domain is not None:
        domain = str(domain).strip().lower()
        if "." not in domain or domain.startswith(".") or domain.endswith("."):
            raise ConfigError(f"ens.domain must be a full name such as 'site.eth', got {domain!r}")
    return EnsSettings(
        domain=domain,
        max_versions=_positive(section.get("max_versions", 200), "ens.max_versions"),
        lookahead=_positive(section.get("lookahead", 1), "ens.lookahead"),
        expiry=_positive(section.get("expiry", FAR_FUTURE_EXPIRY), "ens.expiry"),
    )


def _hex_value(value: Any, width: int) -> Any:
    # YAML 1.1 reads unquoted 0x... scalars as integers.
    if isinstance(value, int) and not isinstance(value, bool):
        return "0x" + format(value, f"0{width}x")
    return value


def _parse_governance(section: Dict[str, Any]) -> GovernanceSettings:
    safe_address = _hex_value(section.get("safe_address"), 40)
    if safe_address is not None:
        safe_address = checksum(str(safe_address), field="governance.safe_address")
    return GovernanceSettings(
        safe_address=safe_address,
        service_url=section.get("service_url"),
        api_key=section.get("api_key"),
        timeout=_positive(section.get("timeout", 30.0), "governance.timeout", float),
        poll_interval=_positive(section.get("poll_interval", 15.0), "governance.poll_interval", float),
    )


def _parse_storage(section: Dict[str, Any]) -> StorageSettings:
    provider = str(section.get("provider", "storacha")).lower()
    if provider not in STORAGE_PROVIDERS:
        raise ConfigError(
            f"unsupported storage provider '{provider}' (expected one of: {', '.join(STORAGE_PROVIDERS)})"
        )
    return StorageSettings(
        provider=provider,
        kubo_api_url=str(section.get("kubo_api_url", "http://127.0.0.1:5001")),
        timeout=_positive(section.get("timeout", 300.0), "storage.timeout", float),
    )


def _parse_retry(section: Dict[str, Any]) -> RetryPolicy:
    jitter = float(section.get("jitter", 0.25))
    if jitter < 0:
        raise ConfigError("retry.jitter must be >= 0")
    return RetryPolicy(
        attempts=_positive(section.get("attempts", 3), "retry.attempts"),
        base_delay=_positive(section.get("base_delay", 1.0), "retry.base_delay", float),
        factor=_positive(section.get("factor", 2.0), "retry.factor", float),
        jitter=jitter,
    )


def _overlay(data: Dict[str, Any], values: Mapping[str, Any]) -> None:
    for dotted, value in values.items():
        if value is None:
            continue
        section, key = dotted.split(".", 1)
        target = data.setdefault(section, {})
        if not isinstance(target, dict):
            raise ConfigError(f"'{section}' section must be a mapping")
        target[key] = value


def parse_config(data: Mapping[str, Any]) -> CliConfig:
    if not isinstance(data, Mapping):
        raise ConfigError("configuration must be a mapping")
    signer = _section(data, "signer")
    return CliConfig(
        network=_parse_network(_section(data, "network")),
        ens=_parse_ens(_section(data, "ens")),
        governance=_parse_governance(_section(data, "governance")),
        signer=SignerSettings(private_key=_hex_value(signer.get("private_key"), 64)),
        storage=_parse_storage(_section(data, "storage")),
        retry=_parse_retry(_section(data, "retry")),
    )


def load_config(
    path: Optional[Path] = None,
    *,
    environ: Optional[Mapping[str, str]] = None,
    overrides: Optional[Mapping[str, Any]] = None,
) -> CliConfig:
    """Load configuration from ``path``, the environment and CLI ``overrides``.

    ``overrides`` maps dotted names (``"ens.domain"``) to values; ``None``
    values are ignored so unset flags fall through to the lower layers.  When
    ``path`` is omitted, ``ens-publish.yaml`` in the working directory is used
    if it exists.
    """

    data: Dict[str, Any] = {}
    if path is None:
        path = DEFAULT_CONFIG_PATH if DEFAULT_CONFIG_PATH.exists() else None
    elif not path.exists():
        raise ConfigError(f"configuration file {path} does not exist")

    if path is not None:
        try:
            loaded = yaml.safe_load(path.read_text())
        except yaml.YAMLError as exc:
            raise ConfigError(f"{path} is not valid YAML: {exc}") from exc
        if loaded is not None and not isinstance(loaded, dict):
            raise ConfigError("configuration must be a mapping")
        data = loaded or {}

    env = os.environ if environ is None else environ
    _overlay(data, {f"{s}.{k}": env.get(var) or None for var, (s, k) in ENVIRONMENT.items()})
    _overlay(data, overrides or {})
    return parse_config(data)


def write_template(path: Path, *, force: bool = False) -> Path:
    if path.exists() and not force:
        raise ConfigError(f"{path} already exists", hint="Pass --force to overwrite it.")
    path.write_text(TEMPLATE)
    return path


__all__: List[str] = [
    "CliConfig",
    "EnsSettings",
    "GovernanceSettings",
    "NetworkSettings",
    "SignerSettings",
    "StorageSettings",
    "TEMPLATE",
    "load_config",
    "parse_config",
    "write_template",
]
