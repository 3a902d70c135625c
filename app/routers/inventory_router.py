"""库存查询 API 路由"""

from fastapi import APIRouter, Body, HTTPException, Path
import logging

from app.core.dependencies import InventoryServiceDep
from app.schemas.inventory_api import (
    BatchStockQueryRequest,
    BatchStockResponse,
    StockResponse,
)
from app.services.inventory_service import InventoryService

logger = logging.getLogger(__name__)
router = APIRouter(
    prefix="/inventory",
    tags=["库存"],
    responses={
        422: {"description": "请求验证失败"},
        500: {"description": "服务器内部错误"}
    }
)


@router.get(
    "/stock/{product_id}",
    response_model=StockResponse,
    summary="查询商品库存",
    description="""查询指定商品的可用库存数量。

    **缓存策略：**
    - 首先查询Redis缓存
    - 缓存未命中则查询数据库
    - 查询结果缓存5分钟，下单/取消后立即失效
    """,
)
async def get_stock(
    product_id: int = Path(
        ...,
        gt=0,
        description="商品ID",
        examples=[1]
    ),
    service: InventoryService = InventoryServiceDep,
):
    try:
        stock = service.get_product_stock(product_id)
        return StockResponse(success=True, product_id=product_id, available_stock=stock)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"查询库存失败: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))


@router.post(
    "/stock/batch",
    response_model=BatchStockResponse,
    summary="批量查询商品库存",
)
async def batch_get_stocks(
    request: BatchStockQueryRequest = Body(
        ...,
        description="批量查询请求参数"
    ),
    service: InventoryService = InventoryServiceDep,
):
    """批量查询商品库存，Redis mget + 数据库 in 查询"""
    try:
        stocks = service.batch_get_stocks(request.product_ids)
        return BatchStockResponse(success=True, data=stocks)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"批量查询库存失败: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))
