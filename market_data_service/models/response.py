"""统一 API 响应模型"""

from typing import Any, Dict, Optional

from pydantic import BaseModel


class ApiResponse(BaseModel):
    """
    标准 API 响应封装

    meta 携带与数据本身无关的附加信息，例如占位报价数量、指标来源
    """
    success: bool = True
    data: Optional[Any] = None
    message: str = ""
    error: Optional[str] = None
    meta: Optional[Dict[str, Any]] = None

    @classmethod
    def ok(
        cls, data: Any = None, message: str = "success", meta: Optional[Dict[str, Any]] = None
    ) -> "ApiResponse":
        return cls(success=True, data=data, message=message, meta=meta)

    @classmethod
    def fail(cls, error: str, message: str = "failed") -> "ApiResponse":
        return cls(success=False, error=error, message=message)

    def body(self) -> Dict[str, Any]:
        """用于直接构造 JSONResponse 的字典，省略空 meta"""
        return self.model_dump(exclude={"meta"} if self.meta is None else None)
