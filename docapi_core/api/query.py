"""
docapi query library to parse advanced filters and paginate results
"""

import json
import math
import logging
from typing import Any, Dict, Optional, Tuple

from starlette.datastructures import URL

from .base import SchemaValidationError
from ..schemas.engine import Validator


logger = logging.getLogger(__name__)

STORE_OPTION_KEYS = ("collation", "limit", "page", "skip", "sort")

PAGE_HEADER = "X-Adapt-Page"
PAGE_SIZE_HEADER = "X-Adapt-PageSize"
PAGE_TOTAL_HEADER = "X-Adapt-PageTotal"


def _to_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


class QueryEngine:
    """
    Translate raw query parameters into a store filter and store options

    :param validator: validator used for the lax normalization of filters
    :param default_page_size: page size used when no ``limit`` was given
    :param max_page_size: upper bound of the page size, regardless of ``limit``
    """

    def __init__(self, validator: Validator, default_page_size: int = 100, max_page_size: int = 250):
        self.validator = validator
        self.default_page_size = default_page_size
        self.max_page_size = max_page_size

    async def parse_query(
            self,
            schema_name: Optional[str],
            raw_query: Optional[Dict[str, Any]],
            store_options: Dict[str, Any]
    ) -> Dict[str, Any]:
        """
        Move store options out of the raw query and return the normalized filter

        The keys ``collation``, ``limit``, ``page``, ``skip`` and ``sort`` are
        removed from the query and added to `store_options` (which is modified
        in place). String values are decoded as JSON, so ``?sort={"name":1}``
        works; values that can't be decoded are dropped with a warning.

        :param schema_name: name of the schema used to normalize the filter, if any
        :param raw_query: raw query parameters (won't be modified)
        :param store_options: dictionary receiving the extracted store options
        :return: the remaining filter, lax-validated against the schema
        """

        query = dict(raw_query or {})
        for key in STORE_OPTION_KEYS:
            if key not in query:
                continue
            value = query.pop(key)
            if isinstance(value, str):
                try:
                    value = json.loads(value)
                except ValueError:
                    logger.warning(f"Dropped store option {key!r}: value {value!r} is not valid JSON")
                    continue
            store_options[key] = value

        return await self.normalize(schema_name, query)

    async def normalize(self, schema_name: Optional[str], query: Dict[str, Any]) -> Dict[str, Any]:
        if schema_name is None:
            return query
        if isinstance(query.get("$or"), list):
            remaining = {k: v for k, v in query.items() if k != "$or"}
            result = await self._validate_lax(schema_name, remaining) if remaining else {}
            result["$or"] = [await self._validate_lax(schema_name, branch) for branch in query["$or"]]
            return result
        return await self._validate_lax(schema_name, query)

    async def _validate_lax(self, schema_name: str, data: Any) -> Any:
        try:
            return await self.validator.validate_lax(schema_name, data)
        except SchemaValidationError as exc:
            logger.debug(f"Keeping query part {data!r} unchanged after failed validation: {exc.detail}")
            return data

    def paginate(
            self,
            url: str,
            store_options: Dict[str, Any],
            doc_count: int
    ) -> Tuple[Dict[str, Any], Dict[str, str]]:
        """
        Calculate the effective store options and response headers for one page of results

        :param url: full request URL used to build the ``Link`` header
        :param store_options: store options as extracted by ``parse_query``
        :param doc_count: total number of documents matching the filter
        :return: tuple of the new store options (``limit`` and ``skip`` set,
            ``page`` removed) and the pagination response headers
        """

        options = dict(store_options)
        limit = _to_int(options.pop("limit", None))
        page_size = min(limit if limit and limit > 0 else self.default_page_size, self.max_page_size)
        page_total = max(1, math.ceil(doc_count / page_size))

        page = _to_int(options.pop("page", None))
        if page is None or page < 1:
            page = 1
        page = min(page, page_total)

        skip = _to_int(options.get("skip"))
        options["limit"] = page_size
        options["skip"] = skip if skip is not None and skip >= 0 else (page - 1) * page_size

        headers = {
            PAGE_HEADER: str(page),
            PAGE_SIZE_HEADER: str(page_size),
            PAGE_TOTAL_HEADER: str(page_total)
        }
        if page_total > 1:
            headers["Link"] = self.make_link_header(url, page, page_size, page_total)
        return options, headers

    @staticmethod
    def make_link_header(url: str, page: int, page_size: int, page_total: int) -> str:
        base = URL(url).remove_query_params(["page", "limit"])

        def link(target: int, rel: str) -> str:
            return f'<{base.include_query_params(page=target, limit=page_size)}>; rel="{rel}"'

        links = []
        if page > 1:
            links.append(link(1, "first"))
            links.append(link(page - 1, "prev"))
        if page < page_total:
            links.append(link(page + 1, "next"))
            links.append(link(page_total, "last"))
        return ", ".join(links)
