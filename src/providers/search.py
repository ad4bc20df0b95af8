import logging
from typing import Any, Optional

import aiohttp

logger = logging.getLogger('modelmix.providers.search')

SERPER_SEARCH_URL = "https://google.serper.dev/search"
SEARCH_RESULT_COUNT = 5


class SearchError(Exception):
    pass


def format_search_results(data: dict[str, Any]) -> str:
    lines = ["Recent search results:", ""]
    for index, result in enumerate(data.get("organic") or [], start=1):
        lines.append(f"{index}. {result.get('title', '')}")
        if result.get("snippet"):
            lines.append(f"   {result['snippet']}")
        if result.get("link"):
            lines.append(f"   Source: {result['link']}")
        lines.append("")

    answer_box = data.get("answerBox")
    if answer_box:
        lines.append(f"Quick Answer: {answer_box.get('answer') or answer_box.get('snippet', '')}")
        lines.append("")

    knowledge_graph = data.get("knowledgeGraph")
    if knowledge_graph:
        lines.append(f"Knowledge Graph: {knowledge_graph.get('description', '')}")

    return "\n".join(lines).strip()


def augment_prompt(prompt: str, search_results: Optional[str], error: Optional[str] = None) -> str:
    if search_results:
        return (
            f"{prompt}\n\n[Internet Search Results]:\n{search_results}\n\n"
            "Please use the above search results to provide an accurate and up-to-date response."
        )
    if error:
        return f"{prompt}\n\n[Note: Internet search was requested but failed: {error}]"
    return prompt


class SerperSearchClient:
    def __init__(self, session: Optional[aiohttp.ClientSession] = None):
        self.session = session

    async def get_session(self) -> aiohttp.ClientSession:
        if not self.session or self.session.closed:
            self.session = aiohttp.ClientSession()
        return self.session

    async def search(self, query: str, api_key: str) -> str:
        """
        Run a web search and return the results formatted as prompt context.

        Raises:
            SearchError: If the request fails or returns a non-2xx status
        """
        headers = {"X-API-KEY": api_key, "Content-Type": "application/json"}
        body = {"q": query, "num": SEARCH_RESULT_COUNT}
        try:
            session = await self.get_session()
            async with session.post(SERPER_SEARCH_URL, json=body, headers=headers) as response:
                if response.status >= 300:
                    raise SearchError(f"Internet search failed: {response.status}")
                data = await response.json()
        except aiohttp.ClientError as e:
            logger.error(f"Serper search request failed: {e}")
            raise SearchError(f"Internet search failed: {e}")

        return format_search_results(data)
