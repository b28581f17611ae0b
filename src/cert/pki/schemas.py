"""
文件功能：
    定义证书创建与目录检查相关的公开数据模型（Pydantic）。

公开接口：
    - FileRole: 按文件名推断出的文件角色
    - CertRole: 证书身份（CA / 节点 / 客户端）
    - CertOptions: create 操作的不可变配置
    - VerifyResult: 证书链校验结果
    - DirEntry: 目录中单个文件的检查结果
    - CreateResult: create 操作的执行结果

内部方法：
    - CertOptions.parse_nodes: 将字符串/JSON 解析为 List[str]
"""

from __future__ import annotations

import json
import re
from datetime import datetime
from enum import Enum
from typing import Any, List

from pydantic import BaseModel, ConfigDict, Field, field_validator


class FileRole(str, Enum):
    CA_CERT = "ca_cert"
    CA_KEY = "ca_key"
    NODE_CERT = "node_cert"
    NODE_KEY = "node_key"
    CLIENT_CERT = "client_cert"
    CLIENT_KEY = "client_key"
    UNSUPPORTED = "unsupported"

    @property
    def is_cert(self) -> bool:
        return self in (FileRole.CA_CERT, FileRole.NODE_CERT, FileRole.CLIENT_CERT)

    @property
    def is_key(self) -> bool:
        return self in (FileRole.CA_KEY, FileRole.NODE_KEY, FileRole.CLIENT_KEY)


class CertRole(str, Enum):
    CA = "ca"
    NODE = "node"
    CLIENT = "client"


class CertOptions(BaseModel):
    """
    create 操作的配置，一次构造后不可修改。
    """

    model_config = ConfigDict(frozen=True)

    dir: str = Field(description="证书输出目录")
    ca_key: str = Field(default="ca.key", description="CA 私钥路径，仅文件名时位于 dir 下")
    nodes: List[str] = Field(default_factory=list, description="节点证书的主机名/IP 列表")
    client: str | None = Field(default=None, description="客户端名称，为空则不生成客户端证书")
    key_size: int = Field(default=2048, ge=1024, description="新建 RSA 私钥的位数")
    days: int = Field(default=1826, gt=0, description="节点/客户端证书有效期（天）")
    ca_days: int = Field(default=3651, gt=0, description="CA 证书有效期（天）")
    force: bool = Field(default=False, description="是否覆盖已存在的证书/私钥")
    verify: bool = Field(default=True, description="创建后是否用 CA 校验新证书")

    @field_validator("nodes", mode="before")
    @classmethod
    def parse_nodes(cls, value: Any) -> List[str]:
        """支持以 JSON 或分隔符（逗号/分号/空白）传入 nodes。"""
        if value is None or value == "":
            return []
        if isinstance(value, (list, tuple)):
            return [str(v).strip() for v in value if str(v).strip()]
        if isinstance(value, str):
            text = value.strip()
            if text.startswith("["):
                try:
                    loaded = json.loads(text)
                except ValueError:
                    loaded = None
                if isinstance(loaded, list):
                    return [str(v).strip() for v in loaded if str(v).strip()]
            return [p for p in re.split(r"[\s,;]+", text) if p]
        return value

    @field_validator("client", mode="before")
    @classmethod
    def strip_client(cls, value: Any) -> Any:
        if isinstance(value, str):
            value = value.strip()
            return value or None
        return value

    @classmethod
    def from_config(cls, settings, **overrides: Any) -> "CertOptions":
        """以配置为默认值构造 CertOptions，overrides 中为 None 的项沿用配置。"""
        data = {
            "dir": settings.dir,
            "ca_key": settings.ca_key,
            "key_size": settings.key_size,
            "days": settings.days,
            "ca_days": settings.ca_days,
        }
        data.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**data)


class VerifyResult(BaseModel):
    """证书链校验结果。"""

    ok: bool
    reason: str | None = None

    def display(self) -> str:
        return "OK" if self.ok else f"FAILED: {self.reason}"


class DirEntry(BaseModel):
    """目录中单个文件的检查结果；error 不为空时其余解析字段可能缺失。"""

    file_name: str = Field(description="文件名")
    file_mode: str | None = Field(default=None, description="文件权限，如 -rw-------")
    role: FileRole = Field(default=FileRole.UNSUPPORTED, description="按文件名推断的角色")
    client_name: str | None = Field(default=None, description="客户端文件中嵌入的名称")
    common_name: str | None = None
    issuer_name: str | None = None
    serial_number: str | None = Field(default=None, description="大写十六进制序列号")
    expire_date: datetime | None = None
    hosts: List[str] | None = None
    algorithm: str | None = None
    digest: str | None = Field(default=None, description="SHA-256 摘要")
    public_key_md5: str | None = Field(default=None, description="公钥 MD5 指纹，仅用于展示")
    verified_ca: str | None = Field(default=None, description="OK / FAILED: <原因> / not attempted")
    error: str | None = None


class CreateResult(BaseModel):
    """create 操作的执行结果。"""

    written: List[str] = Field(default_factory=list, description="本次写入的文件")
    skipped: List[str] = Field(default_factory=list, description="因已存在而跳过的文件")
    verified: List[str] = Field(default_factory=list, description="已通过 CA 校验的证书")
    warnings: List[str] = Field(default_factory=list, description="流程中的警告集合")
