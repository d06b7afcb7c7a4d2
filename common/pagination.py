from rest_framework.pagination import PageNumberPagination


class StandardResultsSetPagination(PageNumberPagination):
    """Shared pagination behavior for list endpoints.

    Clients page with `?page=` and tune page size with `?limit=`; values are
    capped to keep payload sizes predictable.
    """

    page_size_query_param = "limit"
    max_page_size = 200
