"""
调用方身份解析
令牌由上游认证服务签发，这里只做 JWT 校验并提取 sub 作为身份；
无有效令牌时退回到网络来源（代理转发头）或 UA + Origin 的哈希
"""

import hashlib
import logging
from typing import Mapping, Optional

import jwt
from pydantic import BaseModel

from market_data_service.config import MarketDataSettings, settings as default_settings

logger = logging.getLogger(__name__)


class TokenPayload(BaseModel):
    sub: str
    exp: Optional[int] = None


class AuthService:
    """身份令牌校验"""

    def __init__(self, settings: Optional[MarketDataSettings] = None):
        self._settings = settings or default_settings

    def verify_token(self, token: str) -> Optional[TokenPayload]:
        try:
            payload = jwt.decode(
                token, self._settings.JWT_SECRET, algorithms=[self._settings.JWT_ALGORITHM]
            )
            exp = payload.get("exp")
            return TokenPayload(sub=str(payload["sub"]), exp=int(exp) if exp is not None else None)
        except jwt.ExpiredSignatureError:
            logger.debug("Token 已过期")
        except (jwt.InvalidTokenError, KeyError) as exc:
            logger.debug(f"Token 无效: {exc!r}")
        return None

    def token_from_header(self, authorization: Optional[str]) -> Optional[TokenPayload]:
        if not authorization or not authorization.lower().startswith("bearer "):
            return None
        return self.verify_token(authorization[7:].strip())

    def client_identity(
        self, headers: Mapping[str, str], client_host: Optional[str] = None
    ) -> str:
        """限流使用的调用方身份"""
        token = self.token_from_header(headers.get("authorization"))
        if token is not None:
            return f"user:{token.sub}"

        forwarded_for = headers.get("x-forwarded-for")
        if forwarded_for:
            first = forwarded_for.split(",")[0].strip()
            if first:
                return f"ip:{first}"
        for header in ("x-real-ip", "cf-connecting-ip"):
            value = headers.get(header)
            if value:
                return f"ip:{value.strip()}"
        if client_host:
            return f"ip:{client_host}"

        raw = (headers.get("user-agent") or "unknown") + (headers.get("origin") or "unknown")
        return "anon:" + hashlib.md5(raw.encode()).hexdigest()[:12]
