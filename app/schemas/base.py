"""通用响应模型"""

from pydantic import BaseModel, ConfigDict, Field
from typing import Optional


class ORMSchema(BaseModel):
    """支持从 ORM 对象直接生成 Schema"""
    model_config = ConfigDict(from_attributes=True)


class BaseResponse(BaseModel):
    """基础响应模型"""
    success: bool = Field(
        ...,
        description="请求是否成功"
    )
    message: Optional[str] = Field(
        None,
        description="响应消息"
    )


class ErrorResponse(BaseResponse):
    """错误响应模型"""
    code: Optional[str] = Field(
        None,
        description="错误码，如 EMPTY_CART / INSUFFICIENT_STOCK"
    )


class PaginationInfo(BaseModel):
    total: int = Field(..., ge=0, description="总条数")
    page: int = Field(..., ge=1, description="当前页")
    limit: int = Field(..., ge=1, description="每页条数")
    pages: int = Field(..., ge=0, description="总页数")


class CeleryTaskResponse(BaseResponse):
    """Celery任务响应"""
    task_id: Optional[str] = Field(
        None,
        description="任务ID"
    )


class TaskStatusResponse(BaseModel):
    """任务状态响应"""
    task_id: str = Field(..., description="任务ID")
    status: str = Field(..., description="任务状态描述")
    state: str = Field(..., description="任务状态码")


class HealthCheckResponse(BaseModel):
    """健康检查响应"""
    status: str = Field("healthy", description="服务状态")
    service: str = Field("order-service", description="服务名称")
    version: str = Field("1.0.0", description="服务版本")


class APIInfoResponse(BaseModel):
    """API信息响应"""
    message: str = Field("欢迎使用订单服务", description="欢迎信息")
    docs: str = Field("/docs", description="API文档路径")
    health: str = Field("/health", description="健康检查路径")
