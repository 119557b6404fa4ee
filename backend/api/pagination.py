from __future__ import annotations

from rest_framework.pagination import PageNumberPagination
from rest_framework.response import Response


class EnvelopePagination(PageNumberPagination):
    """Enveloppe de liste : {data, pagination: {page, limit, total, pages}}."""

    page_size_query_param = "limit"
    max_page_size = 100

    def get_paginated_response(self, data):  # type: ignore[override]
        return Response(
            {
                "data": data,
                "pagination": {
                    "page": self.page.number,
                    "limit": self.get_page_size(self.request),
                    "total": self.page.paginator.count,
                    "pages": self.page.paginator.num_pages,
                },
            }
        )

    def get_paginated_response_schema(self, schema):  # type: ignore[override]
        return {
            "type": "object",
            "properties": {
                "data": schema,
                "pagination": {
                    "type": "object",
                    "properties": {
                        "page": {"type": "integer"},
                        "limit": {"type": "integer"},
                        "total": {"type": "integer"},
                        "pages": {"type": "integer"},
                    },
                },
            },
        }
