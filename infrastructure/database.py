"""
数据库配置和连接管理
"""
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker
from sqlalchemy.engine import make_url

from core.config import settings
from infrastructure.models import Base

# 创建异步引擎
def _build_async_url(database_url: str) -> str:
    """确保数据库URL使用异步驱动"""
    url = make_url(database_url)
    drivername = url.drivername

    if "+" in drivername:
        return database_url

    driver_map = {
        "postgresql": "postgresql+asyncpg",
        "postgres": "postgresql+asyncpg",
        "sqlite": "sqlite+aiosqlite",
    }

    if drivername not in driver_map:
        raise ValueError(f"不支持的数据库驱动: {drivername}. 请使用 async 驱动或更新DATABASE_URL")

    async_driver = driver_map[drivername]
    return str(url.set(drivername=async_driver))


engine = create_async_engine(
    _build_async_url(settings.DATABASE_URL),
    echo=settings.database.echo,
    future=True
)

# 创建异步会话工厂
AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    expire_on_commit=False,
)


async def create_tables():
    """
    创建所有表
    
    根据models中定义的所有模型创建对应的数据库表
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


def create_task_session_factory():
    """
    为 Celery 任务创建独立的引擎与会话工厂

    每个任务通过 asyncio.run 使用新的事件循环，连接不能跨循环复用，因此使用 NullPool。
    调用方负责在结束时 dispose 引擎。
    """
    from sqlalchemy.pool import NullPool

    task_engine = create_async_engine(
        _build_async_url(settings.DATABASE_URL),
        echo=settings.database.echo,
        poolclass=NullPool,
    )
    return task_engine, async_sessionmaker(bind=task_engine, expire_on_commit=False)
