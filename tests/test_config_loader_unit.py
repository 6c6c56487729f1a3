import pytest

from sof_orchestrator.domain.models import ContractAddresses
from sof_orchestrator.utils.config_loader import load_config, validate_config

BASE_YAML = """
network:
  name: LOCAL
  rpc_url: http://127.0.0.1:8545
  chain_id: 31337
contracts:
  sof_token: "0x5FbDB2315678afecb367f032d93F642f64180aa3"
  raffle: "0xe7f1725E7734CE288F8367e1Bb143E90bb3F0512"
  prize_distributor: ""
trading:
  confirmations: 1
  confirmation_timeout_seconds: 60
lifecycle:
  poll_interval_seconds: 15
"""


@pytest.fixture
def config_file(tmp_path, monkeypatch):
    for name in ["SOF_NETWORK", "SOF_RPC_URL", "SOF_CHAIN_ID", "SOF_CONFIRMATION_TIMEOUT_SECONDS"]:
        monkeypatch.delenv(name, raising=False)
    path = tmp_path / "config.yaml"
    path.write_text(BASE_YAML, encoding="utf-8")
    return path


def test_load_config_reads_yaml(config_file):
    cfg = load_config(config_file, force_reload=True)
    assert cfg["network"]["chain_id"] == 31337
    contracts = ContractAddresses.from_config(cfg)
    assert contracts.raffle.startswith("0xe7f1")
    # Empty strings become "not configured".
    assert contracts.prize_distributor is None


def test_env_overrides_operational_settings(config_file, monkeypatch):
    monkeypatch.setenv("SOF_RPC_URL", "http://node:8545")
    monkeypatch.setenv("SOF_CHAIN_ID", "84532")
    monkeypatch.setenv("SOF_CONFIRMATION_TIMEOUT_SECONDS", "5")
    cfg = load_config(config_file, force_reload=True)
    assert cfg["network"]["rpc_url"] == "http://node:8545"
    assert cfg["network"]["chain_id"] == 84532
    assert cfg["trading"]["confirmation_timeout_seconds"] == 5.0


def test_cached_copy_is_isolated(config_file):
    first = load_config(config_file, force_reload=True)
    first["network"]["chain_id"] = 1
    second = load_config(config_file)
    assert second["network"]["chain_id"] == 31337


def test_force_reload_picks_up_changes(config_file):
    load_config(config_file, force_reload=True)
    config_file.write_text(BASE_YAML.replace("31337", "1337"), encoding="utf-8")
    assert load_config(config_file)["network"]["chain_id"] == 31337
    assert load_config(config_file, force_reload=True)["network"]["chain_id"] == 1337


def test_missing_file_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "nope.yaml", force_reload=True)


def test_non_mapping_is_rejected(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("- just\n- a list\n", encoding="utf-8")
    with pytest.raises(ValueError, match=r"YAML mapping"):
        load_config(path, force_reload=True)


@pytest.mark.parametrize(
    "cfg,match",
    [
        ({"network": {}, "contracts": {}, "trading": {}}, r"Missing required config sections: lifecycle"),
        ({"network": {"rpc_url": "x"}, "contracts": {}, "trading": {}, "lifecycle": {}}, r"network.chain_id"),
        (
            {"network": {"rpc_url": "x", "chain_id": 1}, "contracts": {"sof_token": "0x1"}, "trading": {}, "lifecycle": {}},
            r"contracts.raffle",
        ),
        (
            {
                "network": {"rpc_url": "x", "chain_id": 1},
                "contracts": {"sof_token": "0x1", "raffle": "0x2"},
                "trading": {"confirmation_timeout_seconds": 0},
                "lifecycle": {},
            },
            r"confirmation_timeout_seconds",
        ),
    ],
)
def test_validate_config_errors(cfg, match):
    with pytest.raises(ValueError, match=match):
        validate_config(cfg)
