"""
Snowflake Connection - Pass-Cut Platform
passcut/services/snowflake.py

Connection factory used by the Snowflake repository.
"""
import snowflake.connector

from passcut.config import settings


def get_snowflake_connection() -> snowflake.connector.SnowflakeConnection:
    """Open a new Snowflake connection from settings."""
    password = settings.SNOWFLAKE_PASSWORD.get_secret_value() if settings.SNOWFLAKE_PASSWORD else None
    return snowflake.connector.connect(
        account=settings.SNOWFLAKE_ACCOUNT,
        user=settings.SNOWFLAKE_USER,
        password=password,
        warehouse=settings.SNOWFLAKE_WAREHOUSE,
        database=settings.SNOWFLAKE_DATABASE,
        schema=settings.SNOWFLAKE_SCHEMA,
        role=settings.SNOWFLAKE_ROLE,
    )
