# hm_ledger/common/api/pagination.py
from __future__ import annotations

from rest_framework.pagination import PageNumberPagination
from rest_framework.response import Response


class DefaultPagination(PageNumberPagination):
    page_size = 25
    page_size_query_param = "page_size"
    max_page_size = 200


def paginate(request, items, serializer_class, *, paginator: PageNumberPagination | None = None) -> Response:
    """
    Stable list contract: { count, next, previous, results }.
    `items` may be a queryset or any sliceable sequence (statement rows).
    """
    p = paginator or DefaultPagination()
    page = p.paginate_queryset(items, request)
    if page is None:
        return Response(serializer_class(items, many=True).data)
    return p.get_paginated_response(serializer_class(page, many=True).data)
