"""
配置加载模块：支持 .env、环境变量（CERT_ 前缀）、工作目录 cert.json（或 CERT_CONFIG_FILE 指定）多来源合并。
公开接口：
- Config: 读取配置的设置类
- config: Config 的单例实例
内部方法：
- Config.settings_customise_sources: 自定义配置来源顺序
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Dict, Tuple

from loguru import logger
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict, PydanticBaseSettingsSource


class Config(BaseSettings):
    dir: str = Field(default="tls", description="证书与私钥的默认存放目录")
    ca_key: str = Field(default="ca.key", description="CA 私钥路径，仅文件名时位于 dir 下")
    key_size: int = Field(default=2048, description="新建 RSA 私钥的位数")
    days: int = Field(default=1826, description="节点/客户端证书有效期（天）")
    ca_days: int = Field(default=3651, description="CA 证书有效期（天）")
    ca_common_name: str = "Autumn Root CA"
    ca_organization_name: str = "Autumn"
    node_common_name: str = "Autumn Node"
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_prefix="CERT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ) -> Tuple[PydanticBaseSettingsSource, ...]:
        """自定义配置来源顺序：入参 > 环境变量 > .env > cert.json > secrets。"""

        class JsonFileSettingsSource(PydanticBaseSettingsSource):
            """从工作目录的 cert.json（或 CERT_CONFIG_FILE 指定路径）加载配置的自定义 Source。"""

            def __init__(self, settings_cls):
                super().__init__(settings_cls)
                self._data: Dict[str, Any] | None = None

            def _load(self) -> None:
                if self._data is not None:
                    return
                cfg_path = os.environ.get("CERT_CONFIG_FILE")
                path = Path(cfg_path) if cfg_path else Path.cwd() / "cert.json"
                if not path.exists():
                    self._data = {}
                    return
                try:
                    with path.open("r", encoding="utf-8") as f:
                        data = json.load(f)
                except (OSError, ValueError) as e:
                    logger.warning(f"配置文件 {path} 读取失败，已忽略: {e}")
                    self._data = {}
                    return
                self._data = data if isinstance(data, dict) else {}

            def __call__(self) -> Dict[str, Any]:
                self._load()
                return dict(self._data or {})

            def get_field_value(self, field, field_name):  # type: ignore[override]
                """为满足抽象基类要求，按字段名返回字段值。"""
                self._load()
                data = self._data or {}
                if field_name in data:
                    return data[field_name], field_name, True
                return None, field_name, False

        return (
            init_settings,
            env_settings,
            dotenv_settings,
            JsonFileSettingsSource(settings_cls),
            file_secret_settings,
        )


config = Config()
