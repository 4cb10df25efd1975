"""
SOCKS5 链式代理 - 协议常量模块

版本: 1.0.0

功能概述:
本模块定义了 SOCKS5 客户端（RFC 1928）和用户名/密码子协商
（RFC 1929）所使用的全部协议常量。编解码模块、握手会话和链式连接器
共享这些定义，确保各层使用相同的字节值。

线路格式:
┌──────────────┬──────────────────────────────────────────────────┐
│ 问候         │ 0x05 | 方法数 | 方法[0..n]                       │
│ 方法选择     │ 0x05 | 方法                                      │
│ 认证请求     │ 0x01 | ulen | 用户名 | plen | 密码               │
│ 认证响应     │ 0x01 | 状态 (0x00 = 成功)                        │
│ 连接请求     │ 0x05 | 0x01 | 0x00 | atyp | 目标地址 | 端口(2B) │
│ 连接响应     │ 0x05 | rep  | 0x00 | atyp | 绑定地址 | 端口(2B) │
└──────────────┴──────────────────────────────────────────────────┘

所有多字节字段使用大端序（网络字节序）。
"""

from enum import IntEnum


# ============================================================================
# 协议常量
# ============================================================================

SOCKS_VERSION = 0x05
USERPASS_VERSION = 0x01  # RFC 1929 子协商版本
RESERVED = 0x00
MAX_FIELD_LENGTH = 255  # 单字节长度前缀的上限
MAX_PORT = 0xFFFF
DEFAULT_PORT = 1080


# ============================================================================
# 枚举
# ============================================================================

class AuthMethod(IntEnum):
    """
    认证方法

    每一跳独立协商，同一条代理链中的不同代理可以使用不同的认证方法。
    GSSAPI 仅作为可识别的常量存在，客户端从不提供该方法。
    """
    NO_AUTH = 0x00
    GSSAPI = 0x01
    USERNAME_PASSWORD = 0x02
    NO_ACCEPTABLE = 0xFF


class Command(IntEnum):
    """请求命令，本实现只发出 CONNECT"""
    CONNECT = 0x01
    BIND = 0x02
    UDP_ASSOCIATE = 0x03


class AddressType(IntEnum):
    """地址类型 (ATYP)"""
    IPV4 = 0x01
    DOMAIN = 0x03
    IPV6 = 0x04


class ReplyCode(IntEnum):
    """
    连接响应码 (REP)

    除 SUCCEEDED 以外的任何响应码都会终止本次链式连接尝试。
    """
    SUCCEEDED = 0x00
    GENERAL_FAILURE = 0x01
    NOT_ALLOWED = 0x02
    NETWORK_UNREACHABLE = 0x03
    HOST_UNREACHABLE = 0x04
    CONNECTION_REFUSED = 0x05
    TTL_EXPIRED = 0x06
    COMMAND_NOT_SUPPORTED = 0x07
    ADDRESS_TYPE_NOT_SUPPORTED = 0x08


REPLY_MESSAGES = {
    ReplyCode.SUCCEEDED: "成功",
    ReplyCode.GENERAL_FAILURE: "SOCKS 服务器一般性故障",
    ReplyCode.NOT_ALLOWED: "规则集不允许该连接",
    ReplyCode.NETWORK_UNREACHABLE: "网络不可达",
    ReplyCode.HOST_UNREACHABLE: "主机不可达",
    ReplyCode.CONNECTION_REFUSED: "连接被拒绝",
    ReplyCode.TTL_EXPIRED: "TTL 已过期",
    ReplyCode.COMMAND_NOT_SUPPORTED: "不支持的命令",
    ReplyCode.ADDRESS_TYPE_NOT_SUPPORTED: "不支持的地址类型",
}

# 地址类型对应的定长地址字节数（域名为变长）
ADDRESS_LENGTHS = {
    AddressType.IPV4: 4,
    AddressType.IPV6: 16,
}
