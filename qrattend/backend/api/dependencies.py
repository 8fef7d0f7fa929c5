# qrattend/backend/api/dependencies.py
from fastapi import Request, Depends
import redis.asyncio as redis
import asyncpg

from ..db.redis_client import RedisClient
from ..db.db_client import AsyncPostgresClient
from ..services.auth_service import AuthService
from ..services.admin_service import AdminService
from ..services.student_service import StudentService


def get_redis_pool(request: Request) -> redis.ConnectionPool:
    """
    Provides the Redis connection pool kept in the application state.
    """
    return request.app.state.redis_pool

def get_postgres_pool(request: Request) -> asyncpg.Pool:
    """
    Provides the PostgreSQL connection pool kept in the application state.
    """
    return request.app.state.postgres_pool


def get_auth_service(
    redis_pool: redis.ConnectionPool = Depends(get_redis_pool),
    postgres_pool: asyncpg.Pool = Depends(get_postgres_pool)
) -> AuthService:
    """
    Builds a fresh AuthService per request on top of the shared pools.
    """
    return AuthService(redis_client=RedisClient(pool=redis_pool), db_client=AsyncPostgresClient(pool=postgres_pool))


def get_admin_service(
    postgres_pool: asyncpg.Pool = Depends(get_postgres_pool)
) -> AdminService:
    return AdminService(db_client=AsyncPostgresClient(pool=postgres_pool))


def get_student_service(
    postgres_pool: asyncpg.Pool = Depends(get_postgres_pool)
) -> StudentService:
    return StudentService(db_client=AsyncPostgresClient(pool=postgres_pool))
