"""Client for the remote directory, routed through the RequestQueue."""

import logging
from typing import List, Optional

from connsync.domain.interfaces.transport import RequestTarget
from connsync.domain.models.records import Record
from connsync.infrastructure.api import response_parser
from connsync.infrastructure.resilience.request_queue import RequestOptions, RequestQueue

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://www.linkedin.com/voyager/api"
DEFAULT_PAGE_PATH = "/relationships/dash/connections"
DEFAULT_LOOKUP_PATH = "/typeahead/hitsV2"
DEFAULT_PAGE_DECORATION = "com.linkedin.voyager.dash.deco.web.mynetwork.ConnectionListWithProfile-5"
LOOKUP_RESULT_COUNT = 5


class DirectoryClient:
    """Builds request targets and parses their responses."""

    def __init__(
        self,
        queue: RequestQueue,
        base_url: str = DEFAULT_BASE_URL,
        page_path: str = DEFAULT_PAGE_PATH,
        lookup_path: str = DEFAULT_LOOKUP_PATH,
        profile_base_url: str = response_parser.DEFAULT_PROFILE_BASE_URL,
        page_timeout: Optional[float] = None,
    ):
        self.queue = queue
        self.base_url = base_url.rstrip("/")
        self.page_path = page_path
        self.lookup_path = lookup_path
        self.profile_base_url = profile_base_url
        self.page_timeout = page_timeout

    def page_target(self, start: int, count: int) -> RequestTarget:
        return RequestTarget(
            url=f"{self.base_url}{self.page_path}",
            params={
                "decorationId": DEFAULT_PAGE_DECORATION,
                "count": count,
                "start": start,
                "sortType": "RECENTLY_ADDED",
            },
            label=f"records[{start}:{start + count}]",
        )

    def lookup_target(self, affiliation_key: str) -> RequestTarget:
        return RequestTarget(
            url=f"{self.base_url}{self.lookup_path}",
            params={
                "keywords": affiliation_key,
                "origin": "GLOBAL_SEARCH_HEADER",
                "q": "blended",
                "start": 0,
                "count": LOOKUP_RESULT_COUNT,
            },
            label=f"logo[{affiliation_key}]",
        )

    async def fetch_page(self, start: int, count: int, priority: int = 0) -> List[Record]:
        """Fetches and parses one page of records.

        Raises:
            ClassifiedError: If the queue gave up on the request.
            ParsingError: If the response has an unexpected shape.
        """
        options = RequestOptions(priority=priority, timeout=self.page_timeout)
        response = await self.queue.enqueue(self.page_target(start, count), options)
        records = response_parser.parse_records_page(response.body, self.profile_base_url)
        logger.debug(f"Fetched {len(records)} records at offset {start}")
        return records

    async def fetch_affiliation_logo(self, key: str, priority: int = -1) -> Optional[str]:
        """Looks up the logo reference for an affiliation, None if there is none."""
        response = await self.queue.enqueue(self.lookup_target(key), RequestOptions(priority=priority))
        return response_parser.parse_logo_lookup(response.body)
