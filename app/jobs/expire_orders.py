"""过期未支付订单回收脚本（方式一：本地命令行执行）"""

import argparse
import logging
from app.db.session import SessionLocal
from app.services.cart_service import CartService
from app.services.inventory_service import InventoryService
from app.services.order_service import OrderService
from app.core.redis import redis_client

# 配置日志
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

def run_expiry(batch_size: int = 500, dry_run: bool = False):
    """回收超过支付截止时间的在线订单

    Args:
        batch_size: 批处理大小
        dry_run: 是否为试运行模式（只统计，不取消订单）
    """
    db = SessionLocal()
    try:
        service = OrderService(
            db,
            inventory=InventoryService(db, redis_client),
            carts=CartService(db),
        )
        if dry_run:
            expired_count = service.count_expired_online_orders()
            logger.info(f"试运行模式：发现 {expired_count} 个过期未支付订单")
            return expired_count

        count = service.expire_pending_online_orders(batch_size)
        logger.info(f"回收完成：取消 {count} 个过期未支付订单")
        return count
    except Exception as e:
        logger.error(f"回收执行失败: {str(e)}")
        db.rollback()
        raise
    finally:
        db.close()

def main(argv=None):
    """主函数"""
    parser = argparse.ArgumentParser(description='过期未支付订单回收工具')
    parser.add_argument(
        '--batch-size',
        type=int,
        default=500,
        help='批处理大小 (默认: 500)'
    )
    parser.add_argument(
        '--dry-run',
        action='store_true',
        help='试运行模式，只统计不执行取消'
    )
    parser.add_argument(
        '--verbose',
        action='store_true',
        help='详细输出模式'
    )

    args = parser.parse_args(argv)

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    try:
        result = run_expiry(args.batch_size, args.dry_run)
        if args.dry_run:
            print(f"📊 试运行结果：发现 {result} 个过期订单")
        else:
            print(f"✅ 回收完成：取消了 {result} 个订单")
    except Exception as e:
        print(f"❌ 执行失败: {str(e)}")
        return 1

    return 0

if __name__ == "__main__":
    exit(main())
