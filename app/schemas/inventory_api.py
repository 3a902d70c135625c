"""库存API专用的Pydantic模型"""

from pydantic import BaseModel, Field
from typing import Dict, List

from app.schemas.base import BaseResponse


class BatchStockQueryRequest(BaseModel):
    """批量查询库存请求"""
    product_ids: List[int] = Field(
        ...,
        min_length=1,
        max_length=100,
        description="商品ID列表",
        examples=[[1, 2, 3]]
    )


class StockResponse(BaseResponse):
    """单个商品库存响应"""
    product_id: int = Field(..., description="商品ID")
    available_stock: int = Field(..., ge=0, description="可用库存数量")


class BatchStockResponse(BaseResponse):
    """批量库存查询响应"""
    data: Dict[int, int] = Field(..., description="商品ID到库存数量的映射")
