"""
命令行入口：cert create / cert ls。
仅负责参数解析与结果展示，业务逻辑位于 src.cert.pki.services。
"""

from __future__ import annotations

import sys
from typing import List

import click
from loguru import logger

from src.cert.config import config
from src.cert.pki import services
from src.cert.pki.schemas import CertOptions, DirEntry


def _format_entry(entry: DirEntry) -> List[str]:
    if entry.error:
        return [f"{entry.file_name}: error: {entry.error}"]

    lines = [f"{entry.file_mode} {entry.file_name} - {entry.common_name}"]
    if entry.issuer_name:
        lines.append(f"{'Issuer':>14}: {entry.issuer_name}")
    if entry.verified_ca:
        lines.append(f"{'CA Verify':>14}: {entry.verified_ca}")
    if entry.serial_number:
        lines.append(f"{'S/N':>14}: {entry.serial_number}")
    if entry.expire_date:
        lines.append(f"{'Expiration':>14}: {entry.expire_date:%Y-%m-%d %H:%M:%S} UTC")
    if entry.hosts:
        lines.append(f"{'Hosts':>14}: {', '.join(entry.hosts)}")
    if entry.algorithm:
        lines.append(f"{'Algorithm':>14}: {entry.algorithm}")
    if entry.public_key_md5:
        lines.append(f"{'Public Key MD5':>14}: {entry.public_key_md5}")
    lines.append(f"{'SHA-256 Digest':>14}: {entry.digest}")
    return lines


@click.group(name="cert", help="Generate certificates for autumn")
def main() -> None:
    pass


@main.command("ls", help="lists certificates and keys")
@click.option(
    "--dir", "-d", "directory", default=config.dir, show_default=True,
    help="Directory to store certificates",
)
def ls(directory: str) -> None:
    try:
        entries = services.list_certs(directory)
    except OSError as e:
        click.echo(str(e), err=True)
        sys.exit(1)

    if not entries:
        click.echo(f"Directory is empty: {directory}")
        return
    for entry in entries:
        click.echo("\n".join(_format_entry(entry)) + "\n")


@main.command("create", help="creates CA, node and client cert/key pairs")
@click.option(
    "--dir", "-d", "directory", default=config.dir, show_default=True,
    help="Directory to store certificates",
)
@click.option(
    "--ca-key", "-k", default=config.ca_key, show_default=True,
    help="path to the CA private key",
)
@click.option(
    "--keysize", "-r", "key_size", type=int, default=config.key_size, show_default=True,
    help="RSA key bit size for creating new keys",
)
@click.option(
    "--duration", "days", type=int, default=config.days, show_default=True,
    help="duration of cert validity in days",
)
@click.option("--nodes", "-n", default="", help="creates cert/key pair for nodes")
@click.option("--client", "-c", default=None, help="create cert/key pair for a client name")
@click.option("--force", is_flag=True, default=False, help="force overwrite of existing cert/key pair")
@click.option(
    "--verify/--no-verify", default=True, show_default=True,
    help="verify certs against root CA when creating",
)
def create(
    directory: str,
    ca_key: str,
    key_size: int,
    days: int,
    nodes: str,
    client: str | None,
    force: bool,
    verify: bool,
) -> None:
    try:
        options = CertOptions.from_config(
            config,
            dir=directory,
            ca_key=ca_key,
            key_size=key_size,
            days=days,
            nodes=nodes,
            client=client,
            force=force,
            verify=verify,
        )
        logger.debug(f"create options: {options.model_dump_json()}")
        result = services.create_certs(options)
    except (ValueError, RuntimeError, OSError) as e:
        click.echo(str(e), err=True)
        sys.exit(1)

    for path in result.written:
        click.echo(f"created: {path}")
    for path in result.skipped:
        click.echo(f"skipped (exists): {path}")
    for path in result.verified:
        click.echo(f"verified: {path}")
    for message in result.warnings:
        click.echo(f"warning: {message}", err=True)
