from fastapi import Request
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

# One schema per service, to keep service data isolated inside one database
SCHEMAS = (
    "user_schema",
    "catalog_schema",
    "coupon_schema",
    "availability_schema",
    "payment_schema",
    "order_schema",
)

Base = declarative_base()


def build_engine(database_url: str, echo: bool = False, **kwargs) -> AsyncEngine:
    return create_async_engine(database_url, echo=echo, **kwargs)


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(engine, expire_on_commit=False)


async def create_schemas_and_tables(engine: AsyncEngine) -> None:
    async with engine.begin() as conn:
        if conn.dialect.name == "postgresql":
            for schema in SCHEMAS:
                await conn.execute(text(f"CREATE SCHEMA IF NOT EXISTS {schema}"))
        await conn.run_sync(Base.metadata.create_all)


async def get_db(request: Request):
    session_factory = request.app.state.container.session_factory
    async with session_factory() as session:
        yield session
