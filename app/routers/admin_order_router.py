"""后台订单管理 API 路由（展示回收任务的三种调用方式）"""

from fastapi import APIRouter, HTTPException, Path, Query
from typing import Optional
import logging

from app.core.dependencies import AdminDep, OrderQueryServiceDep, OrderServiceDep
from app.core.security import CurrentUser
from app.models import OrderStatus, PaymentStatus
from app.schemas.base import CeleryTaskResponse, PaginationInfo, TaskStatusResponse
from app.schemas.order import (
    ExpireOrdersResponse,
    OrderListResponse,
    OrderResponse,
    OrderSchema,
    UpdateOrderStatusRequest,
)
from app.services.order_query_service import OrderQueryService
from app.services.order_service import OrderService
from celery_app import app as celery_app
from tasks.order_tasks import expire_pending_online_orders as celery_expire_task

logger = logging.getLogger(__name__)
router = APIRouter(
    prefix="/admin/orders",
    tags=["后台订单管理"],
    responses={
        401: {"description": "未登录"},
        403: {"description": "非管理员"},
        404: {"description": "订单不存在"},
        409: {"description": "不允许的状态变更"},
        500: {"description": "服务器内部错误"}
    }
)


@router.get("", response_model=OrderListResponse, summary="订单列表")
async def list_orders(
    status: Optional[OrderStatus] = Query(None, description="按订单状态筛选"),
    payment_status: Optional[PaymentStatus] = Query(None, description="按支付状态筛选"),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    admin: CurrentUser = AdminDep,
    queries: OrderQueryService = OrderQueryServiceDep,
):
    try:
        orders, total = queries.list_orders(
            admin, page=page, limit=limit, status=status, payment_status=payment_status
        )
        return OrderListResponse(
            success=True,
            orders=[OrderSchema.model_validate(order) for order in orders],
            pagination=PaginationInfo(
                total=total, page=page, limit=limit, pages=(total + limit - 1) // limit
            ),
        )
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"后台查询订单列表失败: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/{order_id}", response_model=OrderResponse, summary="订单详情")
async def get_order(
    order_id: int = Path(..., gt=0),
    admin: CurrentUser = AdminDep,
    queries: OrderQueryService = OrderQueryServiceDep,
):
    try:
        order = queries.get_order(admin, order_id)
        return OrderResponse(success=True, order=OrderSchema.model_validate(order))
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"后台查询订单失败: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))


@router.patch(
    "/{order_id}",
    response_model=OrderResponse,
    summary="修改订单状态",
    description="""修改订单状态 / 支付状态 / 备注。

    **规则：**
    - 订单状态：PENDING → PROCESSING → SHIPPED → DELIVERED，非终态可取消
    - 支付状态：PENDING → PAID / FAILED，FAILED → PAID，PAID → REFUNDED
    - 与当前值相同视为无操作，正常返回
    - 取消订单会归还预占库存
    """,
)
async def update_order(
    request: UpdateOrderStatusRequest,
    order_id: int = Path(..., gt=0),
    admin: CurrentUser = AdminDep,
    service: OrderService = OrderServiceDep,
):
    try:
        order = service.update_order_status(
            order_id,
            status=request.status,
            payment_status=request.payment_status,
            notes=request.notes,
        )
        logger.info(f"管理员 {admin.id} 修改订单 {order_id}")
        return OrderResponse(success=True, message="订单已更新", order=OrderSchema.model_validate(order))
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"修改订单状态失败: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/expire/manual", response_model=ExpireOrdersResponse)
async def manual_expire(
    batch_size: int = Query(500, ge=1, le=10000),
    admin: CurrentUser = AdminDep,
    service: OrderService = OrderServiceDep,
):
    """手动回收过期未支付订单（方式二：API 直接调用 Service）"""
    try:
        count = service.expire_pending_online_orders(batch_size)
        return ExpireOrdersResponse(success=True, message="手动回收完成", cancelled_count=count)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"手动回收失败: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/expire/celery", response_model=CeleryTaskResponse)
async def celery_expire(
    batch_size: int = Query(500, ge=1, le=10000),
    admin: CurrentUser = AdminDep,
):
    """触发 Celery 异步回收任务（方式三：Celery 调用）"""
    try:
        task = celery_expire_task.delay(batch_size)
        return CeleryTaskResponse(success=True, message="已提交异步回收任务", task_id=task.id)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Celery 任务提交失败: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/expire/status/{task_id}", response_model=TaskStatusResponse)
async def get_expire_status(
    task_id: str,
    admin: CurrentUser = AdminDep,
):
    """查询 Celery 任务执行状态"""
    try:
        task = celery_app.AsyncResult(task_id)

        if task.state == 'PENDING':
            status = "任务等待中"
        elif task.state == 'SUCCESS':
            status = f"任务完成: {task.result}"
        elif task.state == 'FAILURE':
            status = f"任务失败: {str(task.info)}"
        else:
            status = f"任务状态: {task.state}"

        return TaskStatusResponse(task_id=task_id, status=status, state=task.state)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"查询任务状态失败: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))
