from pathlib import Path

import pytest

from ens_publish.config import FAR_FUTURE_EXPIRY, NETWORKS
from ens_publish.errors import ConfigError
from publish_cli.config import TEMPLATE, load_config, parse_config, write_template

SAFE = "0x5afe5afe5afe5afe5afe5afe5afe5afe5afe5afe"
KEY = "0x" + "4c" * 32


def write(tmp_path: Path, text: str) -> Path:
    path = tmp_path / "ens-publish.yaml"
    path.write_text(text)
    return path


def test_load_config(tmp_path: Path):
    path = write(
        tmp_path,
        f"""
network:
  name: mainnet
  rpc_url: https://rpc.example
  timeout: 10
ens:
  domain: Site.ETH
  max_versions: 50
  lookahead: 4
governance:
  safe_address: "{SAFE}"
  poll_interval: 5
storage:
  provider: kubo
  kubo_api_url: http://ipfs:5001
retry:
  attempts: 5
  jitter: 0
""",
    )

    cfg = load_config(path, environ={})

    assert cfg.network.name == "mainnet"
    assert cfg.network.timeout == 10.0
    assert cfg.ens.domain == "site.eth"
    assert cfg.ens.max_versions == 50
    assert cfg.governance.safe_address.lower() == SAFE
    assert cfg.storage.provider == "kubo"
    assert cfg.retry.attempts == 5
    assert cfg.retry.jitter == 0.0

    publish = cfg.to_publish_config()
    assert publish.network is NETWORKS["mainnet"]
    assert publish.parent_name == "site.eth"
    assert publish.lookahead == 4
    assert publish.expiry == FAR_FUTURE_EXPIRY


def test_defaults_without_file(tmp_path: Path, monkeypatch):
    monkeypatch.chdir(tmp_path)

    cfg = load_config(environ={})

    assert cfg.network.name == "sepolia"
    assert cfg.ens.domain is None
    assert cfg.storage.provider == "storacha"
    assert cfg.retry.attempts == 3


def test_environment_overrides_file(tmp_path: Path):
    path = write(tmp_path, "ens:\n  domain: file.eth\nnetwork:\n  name: mainnet\n")

    cfg = load_config(
        path,
        environ={"ENS_DOMAIN": "env.eth", "SAFE_ADDRESS": SAFE, "OWNER_PRIVATE_KEY": KEY, "DEPLOY_NETWORK": ""},
    )

    assert cfg.ens.domain == "env.eth"
    assert cfg.network.name == "mainnet"
    assert cfg.governance.safe_address.lower() == SAFE
    assert cfg.signer.private_key == KEY


def test_flags_override_environment(tmp_path: Path):
    path = write(tmp_path, "ens:\n  domain: file.eth\n")

    cfg = load_config(
        path,
        environ={"ENS_DOMAIN": "env.eth"},
        overrides={"ens.domain": "flag.eth", "network.rpc_url": None},
    )

    assert cfg.ens.domain == "flag.eth"
    assert cfg.network.rpc_url is None


def test_unquoted_hex_values_from_yaml(tmp_path: Path):
    path = write(tmp_path, f"governance:\n  safe_address: {SAFE}\nsigner:\n  private_key: {KEY}\n")

    cfg = load_config(path, environ={})

    assert cfg.governance.safe_address.lower() == SAFE
    assert cfg.signer.private_key == KEY
    assert cfg.signer.account().address.startswith("0x")


def test_private_key_not_in_repr(tmp_path: Path):
    cfg = load_config(write(tmp_path, f'signer:\n  private_key: "{KEY}"\n'), environ={})

    assert KEY not in repr(cfg)


@pytest.mark.parametrize(
    "text",
    [
        "- just\n- a list\n",
        "network:\n  name: goerli\n",
        "network: sepolia\n",
        "ens:\n  domain: nodot\n",
        "ens:\n  max_versions: 0\n",
        "governance:\n  safe_address: '0x1234'\n",
        "storage:\n  provider: s3\n",
        "retry:\n  attempts: many\n",
        "retry:\n  jitter: -1\n",
        "network: [unclosed\n",
    ],
)
def test_invalid_configuration(tmp_path: Path, text):
    with pytest.raises(ConfigError):
        load_config(write(tmp_path, text), environ={})


def test_missing_file_is_config_error(tmp_path: Path):
    with pytest.raises(ValueError):
        load_config(tmp_path / "absent.yaml", environ={})


def test_require_lists_missing_settings():
    cfg = parse_config({})

    with pytest.raises(ConfigError) as excinfo:
        cfg.require("network.rpc_url", "ens.domain", "governance.safe_address")

    assert "network.rpc_url, ens.domain, governance.safe_address" in str(excinfo.value)


def test_invalid_private_key():
    cfg = parse_config({"signer": {"private_key": "0x1234"}})

    with pytest.raises(ConfigError) as excinfo:
        cfg.signer.account()

    assert "0x1234" not in str(excinfo.value)


def test_write_template(tmp_path: Path):
    path = write_template(tmp_path / "ens-publish.yaml")

    assert path.read_text() == TEMPLATE
    with pytest.raises(ConfigError):
        write_template(path)
    write_template(path, force=True)


def test_template_parses_once_filled_in(tmp_path: Path):
    text = TEMPLATE.replace('"0x..."', f'"{SAFE}"')

    cfg = load_config(write(tmp_path, text), environ={})

    assert cfg.ens.domain == "your-domain.eth"
    assert cfg.network.rpc_url.startswith("https://")
