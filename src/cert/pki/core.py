"""
证书工具的核心逻辑实现。
包括 RSA 私钥生成与读取、CA 自签与节点/客户端证书签发、SAN 解析、
证书链校验、摘要计算以及文件命名约定与按文件名分类。
"""

import base64
import hashlib
import ipaddress
import os
import re
import stat
from datetime import datetime, timedelta, timezone
from typing import Iterable, List, Set, Tuple

from cryptography import x509
from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.serialization import (
    Encoding,
    PrivateFormat,
    PublicFormat,
    NoEncryption,
)
from cryptography.x509.oid import NameOID, ExtendedKeyUsageOID
from loguru import logger

from src.cert.pki.schemas import CertRole, FileRole, VerifyResult

CA_CERT = "ca.crt"
CA_KEY = "ca.key"
NODE_CERT = "node.crt"
NODE_KEY = "node.key"

KEY_FILE_MODE = 0o600
CERT_FILE_MODE = 0o644

# 文件名到角色的固定映射；客户端文件由 _CLIENT_FILE_RE 匹配
_FILE_ROLES = {
    CA_CERT: FileRole.CA_CERT,
    CA_KEY: FileRole.CA_KEY,
    NODE_CERT: FileRole.NODE_CERT,
    NODE_KEY: FileRole.NODE_KEY,
}
_CLIENT_FILE_RE = re.compile(r"^client\.(?P<name>.+)\.(?P<ext>crt|key)$")
_DNS_LABEL_RE = re.compile(r"^[A-Za-z0-9_]([A-Za-z0-9_-]{0,61}[A-Za-z0-9_])?$")
_PEM_BLOCK_RE = re.compile(
    rb"-----BEGIN ([A-Z0-9 ]+)-----(.*?)-----END \1-----", re.DOTALL
)


def client_cert_name(name: str) -> str:
    return f"client.{name}.crt"


def client_key_name(name: str) -> str:
    return f"client.{name}.key"


def classify(file_name: str) -> Tuple[FileRole, str | None]:
    """
    仅根据文件名判断文件角色，不读取内容。
    :param file_name: 不含目录的文件名。
    :return: (角色, 客户端名称)；非客户端文件的客户端名称为 None。
    """
    role = _FILE_ROLES.get(file_name)
    if role is not None:
        return role, None
    match = _CLIENT_FILE_RE.match(file_name)
    if match:
        if match.group("ext") == "crt":
            return FileRole.CLIENT_CERT, match.group("name")
        return FileRole.CLIENT_KEY, match.group("name")
    return FileRole.UNSUPPORTED, None


def generate_key(key_size: int) -> rsa.RSAPrivateKey:
    """生成新的 RSA 私钥。"""
    return rsa.generate_private_key(public_exponent=65537, key_size=key_size)


def load_private_key(path: str) -> rsa.RSAPrivateKey:
    """
    读取 PEM 格式的 RSA 私钥。
    :param path: 私钥文件路径。
    :return: RSA 私钥对象。
    :raises ValueError: PEM 内容损坏、私钥被加密或不是 RSA 私钥。
    :raises OSError: 文件不可读。
    """
    with open(path, "rb") as f:
        data = f.read()
    try:
        key = serialization.load_pem_private_key(data, password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise ValueError(f"无法解析私钥 {path}: {e}") from e
    if not isinstance(key, rsa.RSAPrivateKey):
        raise ValueError(f"私钥 {path} 不是 RSA 私钥: {type(key).__name__}")
    return key


def load_certificate_bytes(data: bytes) -> x509.Certificate:
    try:
        return x509.load_pem_x509_certificate(data)
    except ValueError as e:
        raise ValueError(f"无法解析证书: {e}") from e


def load_certificate(path: str) -> x509.Certificate:
    """读取 PEM 格式的 X.509 证书，内容损坏时抛出 ValueError。"""
    with open(path, "rb") as f:
        return load_certificate_bytes(f.read())


def read_pem_block(data: bytes) -> Tuple[str, bytes]:
    """
    解析数据中的第一个 PEM 块。
    :param data: 文件内容。
    :return: (PEM 类型, DER 内容)，例如 ("PRIVATE KEY", b"...")。
    :raises ValueError: 没有找到 PEM 块或 Base64 内容无效。
    """
    match = _PEM_BLOCK_RE.search(data)
    if not match:
        raise ValueError("未找到 PEM 数据块")
    # 跳过 Proc-Type 等 RFC 1421 头部行
    lines = [line for line in match.group(2).split() if b":" not in line]
    body = base64.b64decode(b"".join(lines), validate=True)
    return match.group(1).decode("ascii"), body


def key_to_pem(key: rsa.RSAPrivateKey) -> bytes:
    return key.private_bytes(
        encoding=Encoding.PEM,
        format=PrivateFormat.PKCS8,
        encryption_algorithm=NoEncryption(),
    )


def cert_to_pem(cert: x509.Certificate) -> bytes:
    return cert.public_bytes(Encoding.PEM)


def sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def md5_hex(data: bytes) -> str:
    """MD5 指纹（冒号分隔），仅用于展示，不用于任何安全判断。"""
    digest = hashlib.md5(data, usedforsecurity=False).hexdigest()
    return ":".join(digest[i : i + 2] for i in range(0, len(digest), 2))


def public_key_der(public_key) -> bytes:
    return public_key.public_bytes(
        encoding=Encoding.DER, format=PublicFormat.SubjectPublicKeyInfo
    )


def same_public_key(cert: x509.Certificate, key: rsa.RSAPrivateKey) -> bool:
    return public_key_der(cert.public_key()) == public_key_der(key.public_key())


def public_key_algorithm(cert: x509.Certificate) -> str:
    public_key = cert.public_key()
    if isinstance(public_key, rsa.RSAPublicKey):
        return f"RSA-{public_key.key_size}"
    return type(public_key).__name__


def get_common_name(name: x509.Name) -> str | None:
    try:
        return name.get_attributes_for_oid(NameOID.COMMON_NAME)[0].value
    except IndexError:
        return None


def get_organization(name: x509.Name) -> str | None:
    try:
        return name.get_attributes_for_oid(NameOID.ORGANIZATION_NAME)[0].value
    except IndexError:
        return None


def file_mode(path: str) -> str:
    return stat.filemode(os.stat(path).st_mode)


def _is_valid_dns_name(host: str) -> bool:
    name = host[2:] if host.startswith("*.") else host
    if not name or len(name) > 253:
        return False
    labels = name.split(".")
    if labels[-1].isdigit():
        return False
    return all(_DNS_LABEL_RE.match(label) for label in labels)


def _is_ip(host: str) -> bool:
    try:
        address = ipaddress.ip_address(host)
    except ValueError:
        return False
    # SAN 中的 IP 无法保存 IPv6 作用域（%eth0）
    return getattr(address, "scope_id", None) is None


def parse_hosts(nodes: Iterable[str]) -> Tuple[List[str], List[str]]:
    """
    整理节点主机列表，用于填充 SAN。
    IP 字面量按 IP 处理，其余按 DNS 名称校验；空项与重复项被丢弃，顺序保持不变。
    :param nodes: 原始主机列表。
    :return: (有效主机列表, 无效主机列表)。
    """
    valid: List[str] = []
    invalid: List[str] = []
    for raw in nodes:
        host = raw.strip()
        if not host or host in valid:
            continue
        if _is_ip(host) or _is_valid_dns_name(host):
            valid.append(host)
        else:
            logger.warning(f"忽略无效的主机名/IP: {host!r}")
            invalid.append(host)
    return valid, invalid


def _general_name(host: str) -> x509.GeneralName:
    try:
        return x509.IPAddress(ipaddress.ip_address(host))
    except ValueError:
        return x509.DNSName(host)


def get_hosts(cert: x509.Certificate) -> List[str]:
    """按证书中的顺序返回 SAN 中的 DNS 名称与 IP。"""
    try:
        san = cert.extensions.get_extension_for_class(x509.SubjectAlternativeName)
    except x509.ExtensionNotFound:
        return []
    hosts = []
    for name in san.value:
        if isinstance(name, x509.IPAddress):
            hosts.append(str(name.value))
        elif isinstance(name, x509.DNSName):
            hosts.append(name.value)
    return hosts


def random_serial(issued: Set[int]) -> int:
    """
    生成本次运行内不重复的随机序列号，并记录到 issued 中。
    :param issued: 本次运行已使用的序列号集合。
    """
    serial = x509.random_serial_number()
    while serial in issued:
        serial = x509.random_serial_number()
    issued.add(serial)
    return serial


def _validity(days: int) -> Tuple[datetime, datetime]:
    now = datetime.now(timezone.utc)
    # 容忍少量时钟偏差
    return now - timedelta(minutes=1), now + timedelta(days=days)


def build_ca_certificate(
    key: rsa.RSAPrivateKey,
    common_name: str,
    organization: str,
    days: int,
    serial: int,
) -> x509.Certificate:
    """
    生成自签 CA 证书。
    :param key: CA 私钥。
    :param common_name: CA 的 Common Name。
    :param organization: CA 的组织名称。
    :param days: 有效期（天）。
    :param serial: 证书序列号。
    :return: 自签 CA 证书。
    """
    subject = x509.Name(
        [
            x509.NameAttribute(NameOID.ORGANIZATION_NAME, organization),
            x509.NameAttribute(NameOID.COMMON_NAME, common_name),
        ]
    )
    not_before, not_after = _validity(days)
    builder = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(subject)
        .public_key(key.public_key())
        .serial_number(serial)
        .not_valid_before(not_before)
        .not_valid_after(not_after)
        .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
        .add_extension(
            x509.KeyUsage(
                digital_signature=True,
                key_encipherment=False,
                key_cert_sign=True,
                crl_sign=True,
                content_commitment=False,
                data_encipherment=False,
                key_agreement=False,
                encipher_only=False,
                decipher_only=False,
            ),
            critical=True,
        )
        .add_extension(
            x509.SubjectKeyIdentifier.from_public_key(key.public_key()), critical=False
        )
    )
    return builder.sign(private_key=key, algorithm=hashes.SHA256())


def build_leaf_certificate(
    key: rsa.RSAPrivateKey,
    role: CertRole,
    common_name: str,
    organization: str,
    hosts: List[str],
    days: int,
    serial: int,
    ca_key: rsa.RSAPrivateKey,
    ca_cert: x509.Certificate,
) -> x509.Certificate:
    """
    使用 CA 签发节点或客户端证书。
    节点证书同时用于服务端与客户端认证（节点之间互相连接），客户端证书仅用于客户端认证。
    :param key: 证书所属私钥。
    :param role: CertRole.NODE 或 CertRole.CLIENT。
    :param common_name: 证书的 Common Name。
    :param organization: 组织名称。
    :param hosts: 已校验的主机名/IP 列表，写入 SAN；为空时不添加 SAN。
    :param days: 有效期（天）。
    :param serial: 证书序列号。
    :param ca_key: CA 私钥。
    :param ca_cert: CA 证书。
    :return: 签发的证书。
    :raises ValueError: role 为 CertRole.CA。
    """
    if role is CertRole.NODE:
        usages = [ExtendedKeyUsageOID.SERVER_AUTH, ExtendedKeyUsageOID.CLIENT_AUTH]
    elif role is CertRole.CLIENT:
        usages = [ExtendedKeyUsageOID.CLIENT_AUTH]
    else:
        raise ValueError(f"不支持签发该角色的证书: {role.value}")

    subject = x509.Name(
        [
            x509.NameAttribute(NameOID.ORGANIZATION_NAME, organization),
            x509.NameAttribute(NameOID.COMMON_NAME, common_name),
        ]
    )
    not_before, not_after = _validity(days)
    builder = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(ca_cert.subject)
        .public_key(key.public_key())
        .serial_number(serial)
        .not_valid_before(not_before)
        .not_valid_after(not_after)
        .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
        .add_extension(
            x509.KeyUsage(
                digital_signature=True,
                key_encipherment=True,
                key_cert_sign=False,
                crl_sign=False,
                content_commitment=False,
                data_encipherment=False,
                key_agreement=False,
                encipher_only=False,
                decipher_only=False,
            ),
            critical=True,
        )
        .add_extension(x509.ExtendedKeyUsage(usages), critical=False)
        .add_extension(
            x509.SubjectKeyIdentifier.from_public_key(key.public_key()), critical=False
        )
        .add_extension(
            x509.AuthorityKeyIdentifier.from_issuer_public_key(ca_key.public_key()),
            critical=False,
        )
    )
    if hosts:
        builder = builder.add_extension(
            x509.SubjectAlternativeName([_general_name(h) for h in hosts]),
            critical=False,
        )
    return builder.sign(private_key=ca_key, algorithm=hashes.SHA256())


def _check_validity(cert: x509.Certificate, label: str, now: datetime) -> str | None:
    if now < cert.not_valid_before_utc:
        return f"{label}尚未生效"
    if now > cert.not_valid_after_utc:
        return f"{label}已过期"
    return None


def verify_certificate(
    cert: x509.Certificate,
    ca_cert: x509.Certificate,
    now: datetime | None = None,
) -> VerifyResult:
    """
    校验证书是否由给定 CA 直接签发且处于有效期内。
    创建后的校验与列目录时的校验共用此函数。
    :param cert: 待校验的证书。
    :param ca_cert: 根 CA 证书。
    :param now: 校验时间，默认当前 UTC 时间。
    :return: VerifyResult；校验不通过时 reason 给出原因，不抛出异常。
    """
    now = now or datetime.now(timezone.utc)

    if cert.issuer != ca_cert.subject:
        return VerifyResult(ok=False, reason="签发者与 CA 主体不一致")

    try:
        constraints = ca_cert.extensions.get_extension_for_class(x509.BasicConstraints)
    except x509.ExtensionNotFound:
        return VerifyResult(ok=False, reason="签发证书不是 CA 证书")
    if not constraints.value.ca:
        return VerifyResult(ok=False, reason="签发证书不是 CA 证书")

    try:
        cert.verify_directly_issued_by(ca_cert)
    except InvalidSignature:
        return VerifyResult(ok=False, reason="签名与 CA 公钥不匹配")
    except (ValueError, TypeError) as e:
        return VerifyResult(ok=False, reason=str(e))

    for checked, label in ((ca_cert, "CA 证书"), (cert, "证书")):
        problem = _check_validity(checked, label, now)
        if problem:
            return VerifyResult(ok=False, reason=problem)
    return VerifyResult(ok=True)


def write_file(path: str, data: bytes, mode: int, force: bool) -> bool:
    """
    写入证书或私钥文件。
    :param path: 目标路径。
    :param data: 文件内容。
    :param mode: 文件权限。
    :param force: 是否覆盖已存在的文件。
    :return: 写入返回 True；文件已存在且未设置 force 时不写入并返回 False。
    :raises OSError: 写入失败。
    """
    flags = os.O_WRONLY | os.O_CREAT
    flags |= os.O_TRUNC if force else os.O_EXCL
    try:
        fd = os.open(path, flags, mode)
    except FileExistsError:
        return False
    with os.fdopen(fd, "wb") as f:
        f.write(data)
    os.chmod(path, mode)
    logger.debug(f"已写入 {path} ({oct(mode)})")
    return True
