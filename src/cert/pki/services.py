"""
证书工具的业务逻辑层。
此模块封装了核心逻辑，提供 create（生成 CA/节点/客户端证书）与 ls（检查证书目录）两个入口供命令行调用。
"""

import os
import re
from typing import List, Set, Tuple

from cryptography import x509
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.serialization import Encoding
from loguru import logger

from src.cert.config import config
from . import core
from .schemas import CertOptions, CertRole, CreateResult, DirEntry, FileRole

NOT_ATTEMPTED = "not attempted"

_CLIENT_NAME_RE = re.compile(r"^[A-Za-z0-9_@-][A-Za-z0-9_.@-]*$")


def _ca_key_path(options: CertOptions) -> str:
    """仅给出文件名时，CA 私钥位于证书目录下。"""
    if os.path.basename(options.ca_key) == options.ca_key:
        return os.path.join(options.dir, options.ca_key)
    return options.ca_key


def _get_or_create_key(
    path: str, options: CertOptions, result: CreateResult
) -> rsa.RSAPrivateKey:
    """已有私钥且未设置 force 时复用，否则生成新私钥并写入。"""
    if os.path.exists(path) and not options.force:
        logger.info(f"复用已有私钥: {path}")
        return core.load_private_key(path)

    key = core.generate_key(options.key_size)
    if not core.write_file(path, core.key_to_pem(key), core.KEY_FILE_MODE, options.force):
        # 检查后文件被其他进程创建
        return core.load_private_key(path)
    logger.info(f"已生成 {options.key_size} 位 RSA 私钥: {path}")
    result.written.append(path)
    return key


def _create_ca_pair(
    options: CertOptions, issued: Set[int], result: CreateResult
) -> Tuple[rsa.RSAPrivateKey, x509.Certificate]:
    """
    加载或创建 CA 私钥与自签证书。
    :return: (CA 私钥, CA 证书)。
    :raises ValueError: CA 私钥/证书损坏、已有证书但缺少私钥，或二者不匹配。
    :raises RuntimeError: 新生成的 CA 证书自签校验失败。
    """
    key_path = _ca_key_path(options)
    cert_path = os.path.join(options.dir, core.CA_CERT)
    keep_cert = os.path.exists(cert_path) and not options.force

    # 保留已有 ca.crt 时必须已有对应的 CA 私钥，此时不写入任何文件
    if keep_cert and not os.path.exists(key_path):
        raise ValueError(
            f"CA key missing for existing ca.crt: 缺少 CA 私钥 {key_path}，"
            f"请恢复私钥或使用 --force 重新生成 {cert_path}"
        )

    ca_key = _get_or_create_key(key_path, options, result)

    if keep_cert:
        ca_cert = core.load_certificate(cert_path)
        if not core.same_public_key(ca_cert, ca_key):
            raise ValueError(f"CA 证书 {cert_path} 与 CA 私钥 {key_path} 不匹配")
        issued.add(ca_cert.serial_number)
        message = f"CA 证书已存在，跳过（使用 --force 覆盖）: {cert_path}"
        logger.warning(message)
        result.skipped.append(cert_path)
        result.warnings.append(message)
        return ca_key, ca_cert

    ca_cert = core.build_ca_certificate(
        ca_key,
        common_name=config.ca_common_name,
        organization=config.ca_organization_name,
        days=options.ca_days,
        serial=core.random_serial(issued),
    )
    core.write_file(cert_path, core.cert_to_pem(ca_cert), core.CERT_FILE_MODE, options.force)
    logger.info(f"已生成自签 CA 证书: {cert_path}")
    result.written.append(cert_path)

    if options.verify:
        check = core.verify_certificate(ca_cert, ca_cert)
        if not check.ok:
            logger.error(f"CA 证书自签校验失败: {check.reason}")
            raise RuntimeError(f"CA 证书校验失败 {cert_path}: {check.reason}")
    return ca_key, ca_cert


def _create_leaf_pair(
    options: CertOptions,
    role: CertRole,
    key_name: str,
    cert_name: str,
    common_name: str,
    hosts: List[str],
    ca_key: rsa.RSAPrivateKey,
    ca_cert: x509.Certificate,
    issued: Set[int],
    result: CreateResult,
) -> None:
    key_path = os.path.join(options.dir, key_name)
    cert_path = os.path.join(options.dir, cert_name)

    if os.path.exists(cert_path) and not options.force:
        message = f"证书已存在，跳过（使用 --force 覆盖）: {cert_path}"
        logger.warning(message)
        result.skipped.append(cert_path)
        result.warnings.append(message)
        return

    try:
        key = _get_or_create_key(key_path, options, result)
    except ValueError as e:
        message = f"无法复用私钥，跳过 {cert_path}: {e}"
        logger.warning(message)
        result.warnings.append(message)
        return

    cert = core.build_leaf_certificate(
        key,
        role,
        common_name=common_name,
        organization=config.ca_organization_name,
        hosts=hosts,
        days=options.days,
        serial=core.random_serial(issued),
        ca_key=ca_key,
        ca_cert=ca_cert,
    )
    if not core.write_file(cert_path, core.cert_to_pem(cert), core.CERT_FILE_MODE, options.force):
        message = f"证书已存在，跳过: {cert_path}"
        logger.warning(message)
        result.skipped.append(cert_path)
        result.warnings.append(message)
        return
    logger.info(f"已签发{role.value}证书: {cert_path} (CN={common_name}, hosts={hosts})")
    result.written.append(cert_path)

    if options.verify:
        written = core.load_certificate(cert_path)
        check = core.verify_certificate(written, ca_cert)
        if not check.ok:
            logger.error(f"证书 {cert_path} 未通过 CA 校验: {check.reason}")
            raise RuntimeError(f"证书校验失败 {cert_path}: {check.reason}")
        result.verified.append(cert_path)


def create_certs(options: CertOptions) -> CreateResult:
    """
    在目标目录中生成 CA、节点与客户端的私钥/证书。
    已存在的文件在未设置 force 时跳过并给出警告；同一次调用中先前写入的文件不会回滚。
    :param options: 不可变的创建配置。
    :return: 写入、跳过、校验通过的文件及警告。
    :raises ValueError: 目录参数无效，或 CA 私钥/证书无效。
    :raises OSError: 目录创建或文件写入失败。
    :raises RuntimeError: 新证书未通过 CA 校验（文件保留在磁盘上）。
    """
    if not options.dir:
        raise ValueError("无效的证书目录")
    os.makedirs(options.dir, mode=0o700, exist_ok=True)

    result = CreateResult()
    issued: Set[int] = set()
    ca_key, ca_cert = _create_ca_pair(options, issued, result)

    hosts, invalid = core.parse_hosts(options.nodes)
    for host in invalid:
        result.warnings.append(f"忽略无效的主机名/IP: {host}")
    if options.nodes and not hosts:
        message = "没有有效的节点主机，未生成节点证书"
        logger.warning(message)
        result.warnings.append(message)

    if hosts:
        _create_leaf_pair(
            options,
            CertRole.NODE,
            core.NODE_KEY,
            core.NODE_CERT,
            config.node_common_name,
            hosts,
            ca_key,
            ca_cert,
            issued,
            result,
        )

    if options.client:
        if _CLIENT_NAME_RE.match(options.client):
            _create_leaf_pair(
                options,
                CertRole.CLIENT,
                core.client_key_name(options.client),
                core.client_cert_name(options.client),
                options.client,
                hosts,
                ca_key,
                ca_cert,
                issued,
                result,
            )
        else:
            message = f"无效的客户端名称，未生成客户端证书: {options.client!r}"
            logger.warning(message)
            result.warnings.append(message)

    return result


def _key_description(role: FileRole) -> str:
    if role is FileRole.CA_KEY:
        return f"{config.ca_common_name} key"
    if role is FileRole.NODE_KEY:
        return f"{config.node_common_name} key"
    return "Client key"


def _describe_cert(
    entry: DirEntry, data: bytes, ca_cert: x509.Certificate | None
) -> None:
    cert = core.load_certificate_bytes(data)
    entry.common_name = core.get_common_name(cert.subject)
    entry.issuer_name = core.get_common_name(cert.issuer) or core.get_organization(cert.issuer)
    entry.serial_number = format(cert.serial_number, "X")
    entry.expire_date = cert.not_valid_after_utc
    entry.algorithm = core.public_key_algorithm(cert)
    entry.digest = core.sha256_hex(cert.public_bytes(Encoding.DER))
    entry.public_key_md5 = core.md5_hex(core.public_key_der(cert.public_key()))

    hosts = core.get_hosts(cert)
    if entry.role is FileRole.CLIENT_CERT and not hosts and entry.common_name:
        hosts = [entry.common_name]
    entry.hosts = hosts or None

    if entry.role is FileRole.CA_CERT:
        return
    if ca_cert is None:
        entry.verified_ca = NOT_ATTEMPTED
    else:
        entry.verified_ca = core.verify_certificate(cert, ca_cert).display()


def _describe_key(entry: DirEntry, data: bytes) -> None:
    label, body = core.read_pem_block(data)
    if "PRIVATE KEY" not in label:
        raise ValueError(f"不是私钥 PEM 数据: {label}")
    entry.common_name = _key_description(entry.role)
    entry.digest = core.sha256_hex(body)


def _inspect_file(directory: str, name: str, ca_cert: x509.Certificate | None) -> DirEntry:
    path = os.path.join(directory, name)
    role, client_name = core.classify(name)
    entry = DirEntry(file_name=name, role=role, client_name=client_name)

    if role is FileRole.UNSUPPORTED:
        if name.endswith(".crt"):
            entry.error = "unsupported certificate"
        elif name.endswith(".key"):
            entry.error = "unsupported key"
        else:
            entry.error = "unsupported file"
        return entry

    try:
        entry.file_mode = core.file_mode(path)
        with open(path, "rb") as f:
            data = f.read()
        if role.is_cert:
            _describe_cert(entry, data, ca_cert)
        else:
            _describe_key(entry, data)
    except (OSError, ValueError) as e:
        logger.warning(f"解析 {path} 失败: {e}")
        entry.error = str(e)
    return entry


def _load_root_ca(directory: str) -> x509.Certificate | None:
    path = os.path.join(directory, core.CA_CERT)
    try:
        return core.load_certificate(path)
    except (OSError, ValueError) as e:
        logger.warning(f"无法读取 CA 证书，跳过证书链校验: {e}")
        return None


def list_certs(directory: str, verify: bool = True) -> List[DirEntry]:
    """
    遍历证书目录，按文件名分类并解析每个文件。
    单个文件解析失败只记录在对应条目的 error 中，不会中断遍历。
    :param directory: 证书目录。
    :param verify: 是否用目录中的 ca.crt 校验其他证书。
    :return: 按文件名排序的检查结果，空目录返回空列表。
    :raises OSError: 目录不存在或不可读。
    """
    names = sorted(
        name
        for name in os.listdir(directory)
        if os.path.isfile(os.path.join(directory, name))
    )
    ca_cert = None
    if verify and core.CA_CERT in names:
        ca_cert = _load_root_ca(directory)
    return [_inspect_file(directory, name, ca_cert) for name in names]
