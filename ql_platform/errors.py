# ql_platform/errors.py
# QLSync - Error taxonomy
# Copyright (c) 2025-2026 CrossWatch / Cenodude (https://github.com/cenodude/CrossWatch)
from __future__ import annotations

# Messages shown to the user; kept in one place so the UI and logs agree.
NO_CONFIG = "请先配置青龙面板连接信息"
COOKIE_NOT_FOUND = "未找到Cookie，请先登录目标网站"
SELECTED_NOT_FOUND = "未找到指定的Cookie"
TOKEN_ERROR = "获取Token失败，请检查Client ID和Secret"
API_ERROR = "青龙面板API调用失败"
NETWORK_ERROR = "网络请求失败，请检查网络连接"
SITE_NOT_FOUND = "网站配置不存在"
SITE_DISABLED = "网站配置已禁用"


class QLSyncError(RuntimeError):
    default_message = "QLSync error"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)

    @property
    def message(self) -> str:
        return str(self.args[0]) if self.args else self.default_message


class ConfigMissingError(QLSyncError):
    default_message = NO_CONFIG


class AuthError(QLSyncError):
    default_message = TOKEN_ERROR


class ApiError(QLSyncError):
    default_message = API_ERROR


class TransportError(QLSyncError):
    default_message = NETWORK_ERROR


class CookieAccessError(QLSyncError):
    default_message = "读取Cookie失败"


class CookieNotFoundError(QLSyncError):
    default_message = COOKIE_NOT_FOUND


class NoCookiesFoundError(CookieNotFoundError):
    default_message = SELECTED_NOT_FOUND


class IdentityInvalidError(QLSyncError):
    default_message = "Cookie身份识别无效"


class DecryptionError(QLSyncError):
    default_message = "解密失败"


class SiteNotFoundError(QLSyncError):
    default_message = SITE_NOT_FOUND


__all__ = [
    "QLSyncError",
    "ConfigMissingError",
    "AuthError",
    "ApiError",
    "TransportError",
    "CookieAccessError",
    "CookieNotFoundError",
    "NoCookiesFoundError",
    "IdentityInvalidError",
    "DecryptionError",
    "SiteNotFoundError",
]
