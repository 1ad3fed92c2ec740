from typing import Optional

from rynko_client.http_client import HttpClient
from rynko_client.models import ListResponse, Template

PDF_FORMATS = ("pdf",)
EXCEL_FORMATS = ("xlsx", "excel")


class TemplatesResource:
    """Read-only access to templates; these routes live outside /api/v1"""

    def __init__(self, http_client: HttpClient):
        self.http_client = http_client

    def _url(self, path: str) -> str:
        return f"{self.http_client.config.base_url_without_version}/api/templates{path}"

    async def list(
        self,
        page: Optional[int] = None,
        limit: Optional[int] = None,
        search: Optional[str] = None,
    ) -> ListResponse[Template]:
        params = {"page": page, "limit": limit, "search": search}
        return await self.http_client.get_absolute(
            self._url("/attachment"), params, ListResponse[Template]
        )

    async def _list_supporting(
        self, formats: tuple, page: Optional[int], limit: Optional[int]
    ) -> ListResponse[Template]:
        result = await self.list(page, limit)
        result.data = [template for template in result.data if template.supports(*formats)]
        return result

    async def list_pdf(
        self, page: Optional[int] = None, limit: Optional[int] = None
    ) -> ListResponse[Template]:
        return await self._list_supporting(PDF_FORMATS, page, limit)

    async def list_excel(
        self, page: Optional[int] = None, limit: Optional[int] = None
    ) -> ListResponse[Template]:
        return await self._list_supporting(EXCEL_FORMATS, page, limit)

    async def get(self, template_id: str) -> Template:
        """Fetches a template by id, short id or slug"""
        return await self.http_client.get_absolute(
            self._url(f"/{template_id}"), response_type=Template
        )
