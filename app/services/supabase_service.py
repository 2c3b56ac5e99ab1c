import logging
from typing import Optional, Dict, Any, List

import httpx
from postgrest.exceptions import APIError
from supabase import AsyncClient, acreate_client

from app.core.exceptions import StoreError

logger = logging.getLogger(__name__)


class SupabaseStore:
    """Table access for the billing sync, one instance per request.

    Every method raises StoreError carrying the PostgREST message (and the
    Postgres error code when there is one) instead of returning partial data.
    """

    def __init__(self, supabase_url: str, supabase_key: str, client: Optional[AsyncClient] = None):
        self.supabase_url = supabase_url
        self.supabase_key = supabase_key
        self.supabase = client

    async def _get_client(self) -> AsyncClient:
        if self.supabase is None:
            if not self.supabase_url or not self.supabase_key:
                raise StoreError("Supabase client not initialized. Check your SUPABASE_URL and SUPABASE_KEY.")
            self.supabase = await acreate_client(self.supabase_url, self.supabase_key)
        return self.supabase

    async def _execute(self, query) -> List[Dict[str, Any]]:
        try:
            response = await query.execute()
        except APIError as e:
            raise StoreError(e.message or str(e), e.code) from e
        except httpx.HTTPError as e:
            raise StoreError(f"Supabase request failed: {e}") from e
        return response.data or []

    async def upsert(self, table: str, rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        client = await self._get_client()
        return await self._execute(client.table(table).upsert(rows))

    async def delete(self, table: str, record_id: str) -> List[Dict[str, Any]]:
        client = await self._get_client()
        return await self._execute(client.table(table).delete().eq("id", record_id))

    async def select(self, table: str, columns: str = "*", limit: Optional[int] = None, **filters: Any) -> List[Dict[str, Any]]:
        client = await self._get_client()
        query = client.table(table).select(columns)
        for column, value in filters.items():
            query = query.eq(column, value)
        if limit is not None:
            query = query.limit(limit)
        return await self._execute(query)

    async def select_one(self, table: str, columns: str = "*", **filters: Any) -> Optional[Dict[str, Any]]:
        rows = await self.select(table, columns, limit=1, **filters)
        if rows and len(rows) > 0:
            return rows[0]
        return None

    async def update(self, table: str, values: Dict[str, Any], **filters: Any) -> List[Dict[str, Any]]:
        client = await self._get_client()
        query = client.table(table).update(values)
        for column, value in filters.items():
            query = query.eq(column, value)
        return await self._execute(query)

    async def close(self) -> None:
        if self.supabase is not None:
            await self.supabase.postgrest.aclose()
            self.supabase = None
