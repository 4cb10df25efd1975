"""
SOCKS5 链式代理 - 握手编解码模块

版本: 1.0.0

功能概述:
本模块提供 SOCKS5 握手消息的纯函数编解码，不进行任何 I/O。

解码约定:
- 所有 decode_* 函数接收字节缓冲区，返回 (值, 已消耗字节数)
- 缓冲区不足时抛出 TruncatedMessage，其 needed 字段给出还需要的确切字节数，
  调用方按该数量继续读取后重试，因此永远不会多读属于隧道数据的字节
- 版本号错误、未知地址类型等格式错误抛出 ProtocolError
- 编码时字段超过协议限制抛出 ValidationError
"""

import struct
from dataclasses import dataclass
from typing import Iterable, Tuple

from .address import AddressSpec, validate_port
from .errors import ProtocolError, TruncatedMessage, ValidationError
from .protocol import (
    ADDRESS_LENGTHS, MAX_FIELD_LENGTH, RESERVED, SOCKS_VERSION, USERPASS_VERSION,
    AddressType, AuthMethod, Command, ReplyCode,
)


@dataclass(frozen=True)
class ConnectReply:
    """
    连接响应

    Attributes:
        code: 响应码
        bound_address: 代理绑定的地址
        bound_port: 代理绑定的端口
    """
    code: ReplyCode
    bound_address: AddressSpec
    bound_port: int

    @property
    def succeeded(self) -> bool:
        return self.code == ReplyCode.SUCCEEDED


def _require(data: bytes, length: int):
    if len(data) < length:
        raise TruncatedMessage(length - len(data))


def _check_version(actual: int, expected: int, what: str):
    if actual != expected:
        raise ProtocolError(f"{what}版本错误: 期望 0x{expected:02x}，收到 0x{actual:02x}")


def _encode_field(value: str, name: str) -> bytes:
    encoded = value.encode('utf-8')
    if len(encoded) > MAX_FIELD_LENGTH:
        raise ValidationError(f"{name}超过 {MAX_FIELD_LENGTH} 字节: {len(encoded)}")
    return struct.pack('>B', len(encoded)) + encoded


# ============================================================================
# 地址
# ============================================================================

def encode_address(address: AddressSpec) -> bytes:
    """编码 ATYP + 地址主体（域名带单字节长度前缀）"""
    body = address.packed()
    if address.type == AddressType.DOMAIN:
        return struct.pack('>BB', address.type, len(body)) + body
    return struct.pack('>B', address.type) + body


def decode_address(data: bytes, offset: int = 0) -> Tuple[Tuple[AddressSpec, int], int]:
    """
    从 offset 处解码 ATYP + 地址 + 端口

    Returns:
        ((地址, 端口), 结束偏移量)
    """
    _require(data, offset + 1)
    atyp = data[offset]
    offset += 1

    if atyp == AddressType.DOMAIN:
        _require(data, offset + 1)
        length = data[offset]
        offset += 1
        _require(data, offset + length + 2)
        name = data[offset:offset + length].decode('utf-8', errors='replace')
        offset += length
        address = AddressSpec._received_domain(name)
    elif atyp in ADDRESS_LENGTHS:
        length = ADDRESS_LENGTHS[AddressType(atyp)]
        _require(data, offset + length + 2)
        address = AddressSpec.from_packed(bytes(data[offset:offset + length]))
        offset += length
    else:
        raise ProtocolError(f"未知的地址类型: 0x{atyp:02x}")

    port = struct.unpack('>H', data[offset:offset + 2])[0]
    return (address, port), offset + 2


# ============================================================================
# 方法协商
# ============================================================================

def encode_greeting(methods: Iterable[AuthMethod]) -> bytes:
    """
    编码问候消息: 0x05 | 方法数 | 方法...

    重复的方法只保留第一次出现。
    """
    unique = []
    for method in methods:
        method = AuthMethod(method)
        if method == AuthMethod.NO_ACCEPTABLE:
            raise ValidationError("不能提供 NO_ACCEPTABLE 方法")
        if method not in unique:
            unique.append(method)

    if not unique:
        raise ValidationError("至少需要提供一种认证方法")
    if len(unique) > MAX_FIELD_LENGTH:
        raise ValidationError(f"认证方法超过 {MAX_FIELD_LENGTH} 个")
    return struct.pack('>BB', SOCKS_VERSION, len(unique)) + bytes(unique)


def decode_greeting(data: bytes) -> Tuple[Tuple[int, ...], int]:
    """解码问候消息，返回 (方法元组, 消耗字节数)"""
    _require(data, 2)
    _check_version(data[0], SOCKS_VERSION, "问候")
    count = data[1]
    _require(data, 2 + count)
    return tuple(data[2:2 + count]), 2 + count


def decode_method_selection(data: bytes) -> Tuple[AuthMethod, int]:
    """
    解码方法选择响应: 0x05 | 方法

    Raises:
        ProtocolError: 版本错误、代理没有可接受的方法或方法未知
    """
    _require(data, 2)
    _check_version(data[0], SOCKS_VERSION, "方法选择")
    if data[1] == AuthMethod.NO_ACCEPTABLE:
        raise ProtocolError("代理没有可接受的认证方法")
    try:
        method = AuthMethod(data[1])
    except ValueError:
        raise ProtocolError(f"未知的认证方法: 0x{data[1]:02x}") from None
    return method, 2


# ============================================================================
# 用户名/密码认证 (RFC 1929)
# ============================================================================

def encode_userpass(username: str, password: str) -> bytes:
    """编码认证请求: 0x01 | ulen | 用户名 | plen | 密码"""
    return (struct.pack('>B', USERPASS_VERSION)
            + _encode_field(username, "用户名")
            + _encode_field(password, "密码"))


def decode_userpass_request(data: bytes) -> Tuple[Tuple[str, str], int]:
    """解码认证请求，返回 ((用户名, 密码), 消耗字节数)"""
    _require(data, 2)
    _check_version(data[0], USERPASS_VERSION, "认证请求")
    ulen = data[1]
    _require(data, 3 + ulen)
    plen = data[2 + ulen]
    end = 3 + ulen + plen
    _require(data, end)
    username = data[2:2 + ulen].decode('utf-8')
    password = data[3 + ulen:end].decode('utf-8')
    return (username, password), end


def decode_userpass_reply(data: bytes) -> Tuple[bool, int]:
    """
    解码认证响应: 0x01 | 状态

    部分代理在此处回送 0x05 作为版本号，这里一并接受。
    """
    _require(data, 2)
    if data[0] not in (USERPASS_VERSION, SOCKS_VERSION):
        raise ProtocolError(f"认证响应版本错误: 0x{data[0]:02x}")
    return data[1] == 0x00, 2


# ============================================================================
# 连接请求 / 响应
# ============================================================================

def encode_connect_request(command: Command, target: AddressSpec, port: int) -> bytes:
    """编码请求: 0x05 | cmd | 0x00 | atyp | 地址 | 端口"""
    validate_port(port)
    try:
        command = Command(command)
    except ValueError:
        raise ValidationError(f"未知的命令: {command!r}") from None
    return (struct.pack('>BBB', SOCKS_VERSION, command, RESERVED)
            + encode_address(target)
            + struct.pack('>H', port))


def decode_connect_request(data: bytes) -> Tuple[Tuple[Command, AddressSpec, int], int]:
    """解码请求，返回 ((命令, 地址, 端口), 消耗字节数)"""
    _require(data, 4)
    _check_version(data[0], SOCKS_VERSION, "请求")
    try:
        command = Command(data[1])
    except ValueError:
        raise ProtocolError(f"未知的命令: 0x{data[1]:02x}") from None
    (address, port), consumed = decode_address(data, 3)
    return (command, address, port), consumed


def decode_connect_reply(data: bytes) -> Tuple[ConnectReply, int]:
    """
    解码响应: 0x05 | rep | 0x00 | atyp | 绑定地址 | 端口

    先要求 4 字节头部，再按地址类型要求剩余的变长部分。

    Raises:
        TruncatedMessage: 数据不足
        ProtocolError: 版本错误、未分配的响应码或未知地址类型
    """
    _require(data, 4)
    _check_version(data[0], SOCKS_VERSION, "响应")
    try:
        code = ReplyCode(data[1])
    except ValueError:
        raise ProtocolError(f"未分配的响应码: 0x{data[1]:02x}") from None
    (address, port), consumed = decode_address(data, 3)
    return ConnectReply(code, address, port), consumed
