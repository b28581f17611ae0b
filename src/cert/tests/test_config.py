"""
测试 config.py 模块的多来源配置合并。
"""

import json

from src.cert.config import Config


def test_config_defaults(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("CERT_CONFIG_FILE", raising=False)
    cfg = Config()
    assert cfg.dir == "tls"
    assert cfg.ca_key == "ca.key"
    assert cfg.key_size == 2048
    assert cfg.days == 1826


def test_config_from_json_file(monkeypatch, tmp_path):
    """CERT_CONFIG_FILE 指定的 JSON 文件生效"""
    path = tmp_path / "settings.json"
    path.write_text(json.dumps({"dir": "certs", "key_size": 4096}), encoding="utf-8")
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("CERT_CONFIG_FILE", str(path))
    cfg = Config()
    assert cfg.dir == "certs"
    assert cfg.key_size == 4096


def test_config_env_overrides_json(monkeypatch, tmp_path):
    """环境变量优先于 JSON 文件"""
    (tmp_path / "cert.json").write_text(json.dumps({"days": 10}), encoding="utf-8")
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("CERT_CONFIG_FILE", raising=False)
    monkeypatch.setenv("CERT_DAYS", "20")
    assert Config().days == 20


def test_config_ignores_broken_json(monkeypatch, tmp_path):
    (tmp_path / "cert.json").write_text("{not json", encoding="utf-8")
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("CERT_CONFIG_FILE", raising=False)
    assert Config().dir == "tls"
