"""过期预占清理本地执行脚本

    python -m pos_stock.jobs.manual_cleanup --dry-run
"""

import argparse
import asyncio
import logging
from datetime import datetime, timezone

from sqlalchemy import func, select

from pos_stock.db.session import build_engine, build_session_factory
from pos_stock.models.cart_reservations import CartReservation, HoldStatus
from tasks.stock_tasks import build_reservation_service

# 配置日志
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


async def count_expired(db_factory) -> int:
    async with db_factory() as db:
        return (
            await db.execute(
                select(func.count(CartReservation.id)).where(
                    CartReservation.status == HoldStatus.RESERVED,
                    CartReservation.expired_at.is_not(None),
                    CartReservation.expired_at <= datetime.now(timezone.utc),
                )
            )
        ).scalar_one()


async def run_cleanup(batch_size: int = 500, dry_run: bool = False, bind=None) -> int:
    """执行过期预占清理

    Args:
        batch_size: 批处理大小
        dry_run: 是否为试运行模式（不实际执行清理）
        bind: 数据库引擎，默认按配置新建
    """
    own_engine = bind is None
    bind = bind or build_engine()
    try:
        if dry_run:
            # 试运行模式：只统计待清理记录数量
            expired_count = await count_expired(build_session_factory(bind))
            logger.info(f"试运行模式：发现 {expired_count} 条过期预占记录待清理")
            return expired_count

        service = build_reservation_service(bind)
        count = await service.cleanup_expired_reservations(batch_size)
        logger.info(f"清理完成：成功清理 {count} 条过期预占记录")
        return count
    except Exception as e:
        logger.error(f"清理执行失败: {str(e)}")
        raise
    finally:
        if own_engine:
            await bind.dispose()


def main(argv=None):
    """主函数"""
    parser = argparse.ArgumentParser(description='收银库存过期预占清理工具')
    parser.add_argument(
        '--batch-size',
        type=int,
        default=500,
        help='批处理大小 (默认: 500)'
    )
    parser.add_argument(
        '--dry-run',
        action='store_true',
        help='试运行模式，只统计不执行清理'
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
        result = asyncio.run(run_cleanup(args.batch_size, args.dry_run))
        if args.dry_run:
            print(f"📊 试运行结果：发现 {result} 条过期记录")
        else:
            print(f"✅ 清理完成：处理了 {result} 条记录")
    except Exception as e:
        print(f"❌ 执行失败: {str(e)}")
        return 1

    return 0

if __name__ == "__main__":
    exit(main())
