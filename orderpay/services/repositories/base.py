"""Base repository with shared Supabase client."""
from typing import Any, Mapping

from supabase._async.client import AsyncClient


class BaseRepository:
    """Base class for all repositories.

    All methods use await with the async client.
    """

    table_name: str = ""

    def __init__(self, client: AsyncClient) -> None:
        self.client = client

    def table(self):
        return self.client.table(self.table_name)

    @staticmethod
    def apply_expected(query, expected: Mapping[str, Any]):
        """Add equality filters for a conditional update (None means IS NULL)."""
        for column, value in expected.items():
            if value is None:
                query = query.is_(column, "null")
            else:
                query = query.eq(column, value)
        return query
