"""
路由依赖注入
- 服务容器：由应用生命周期挂载在 app.state 上
- 入站限流：按调用方身份计数，超限直接返回 429，不做任何后续处理
- 认证：缓存管理等接口要求有效的 Bearer Token
"""

import logging
from typing import Callable, Optional

from fastapi import Depends, Header, HTTPException, Request, Response, status

from market_data_service.container import ServiceContainer
from market_data_service.layers.rate_limit import RateLimitResult

logger = logging.getLogger(__name__)


def get_container(request: Request) -> ServiceContainer:
    container = getattr(request.app.state, "container", None)
    if container is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="服务尚未就绪"
        )
    return container


def rate_limited(tier: str) -> Callable:
    """生成指定限流档位的依赖"""

    async def _dependency(
        request: Request,
        response: Response,
        container: ServiceContainer = Depends(get_container),
    ) -> RateLimitResult:
        client_host = request.client.host if request.client else None
        identity = container.auth.client_identity(request.headers, client_host)
        result = container.rate_limiter(tier).check_and_consume(identity)
        if not result.allowed:
            logger.info(f"限流拒绝 [{tier}] {identity}，{result.retry_after:.1f}s 后重试")
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail="请求过于频繁，请稍后再试",
                headers=result.headers(),
            )
        response.headers.update(result.headers())
        return result

    return _dependency


async def get_current_user(
    authorization: Optional[str] = Header(default=None),
    container: ServiceContainer = Depends(get_container),
) -> dict:
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="未提供认证令牌")
    token_data = container.auth.token_from_header(authorization)
    if token_data is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="令牌无效或已过期")
    return {"username": token_data.sub}
