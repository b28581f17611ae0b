"""
测试 schemas.py 模块。
"""

from types import SimpleNamespace

import pytest
from pydantic import ValidationError

from src.cert.pki.schemas import CertOptions, DirEntry, FileRole, VerifyResult


def test_cert_options_defaults():
    """测试 CertOptions 的默认值"""
    options = CertOptions(dir="tls")
    assert options.ca_key == "ca.key"
    assert options.nodes == []
    assert options.client is None
    assert options.key_size == 2048
    assert options.days == 1826
    assert options.force is False
    assert options.verify is True


@pytest.mark.parametrize(
    "value, expected",
    [
        ("host1,host2,127.0.0.1", ["host1", "host2", "127.0.0.1"]),
        (" host1 , host2 ", ["host1", "host2"]),
        ("host1;host2 host3", ["host1", "host2", "host3"]),
        ('["a.example.com", "10.0.0.1"]', ["a.example.com", "10.0.0.1"]),
        (["x", " ", "y "], ["x", "y"]),
        ("", []),
        (None, []),
    ],
)
def test_cert_options_parse_nodes(value, expected):
    """nodes 支持分隔符字符串、JSON 与列表"""
    assert CertOptions(dir="tls", nodes=value).nodes == expected


def test_cert_options_is_immutable():
    options = CertOptions(dir="tls")
    with pytest.raises(ValidationError):
        options.force = True


@pytest.mark.parametrize("field, value", [("key_size", 512), ("days", 0), ("ca_days", -1)])
def test_cert_options_rejects_invalid_numbers(field, value):
    with pytest.raises(ValidationError):
        CertOptions(dir="tls", **{field: value})


def test_cert_options_blank_client_is_none():
    assert CertOptions(dir="tls", client="  ").client is None
    assert CertOptions(dir="tls", client=" alice ").client == "alice"


def test_cert_options_from_config():
    """配置作为默认值，值为 None 的覆盖项被忽略"""
    settings = SimpleNamespace(dir="certs", ca_key="root.key", key_size=4096, days=30, ca_days=60)
    options = CertOptions.from_config(settings, client=None, nodes="n1", force=True)
    assert options.dir == "certs"
    assert options.ca_key == "root.key"
    assert options.key_size == 4096
    assert options.days == 30
    assert options.ca_days == 60
    assert options.nodes == ["n1"]
    assert options.force is True
    assert options.client is None


def test_verify_result_display():
    assert VerifyResult(ok=True).display() == "OK"
    assert VerifyResult(ok=False, reason="签名不匹配").display() == "FAILED: 签名不匹配"


def test_dir_entry_defaults():
    entry = DirEntry(file_name="readme.txt")
    assert entry.role is FileRole.UNSUPPORTED
    assert entry.error is None
    assert entry.hosts is None


def test_file_role_kinds():
    assert FileRole.NODE_CERT.is_cert and not FileRole.NODE_CERT.is_key
    assert FileRole.CLIENT_KEY.is_key and not FileRole.CLIENT_KEY.is_cert
    assert not FileRole.UNSUPPORTED.is_cert and not FileRole.UNSUPPORTED.is_key
