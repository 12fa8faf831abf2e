"""Gemini File Search Store document operations (google-genai SDK)."""

import logging
from typing import Optional

from rag_gateway.infra.error_handler import wrap_upstream_error

logger = logging.getLogger(__name__)


class GeminiDocumentService:
    """Service for mutating documents held in Gemini file search stores."""

    def __init__(self, api_key: str):
        self._api_key = api_key
        self._client = None

    @property
    def client(self):
        """Lazy initialization of Gemini client."""
        if self._client is None:
            if not self._api_key:
                raise ValueError("GEMINI_API_KEY not configured")
            from google import genai
            self._client = genai.Client(api_key=self._api_key)
        return self._client

    async def delete_document(self, name: str) -> bool:
        """
        Delete a document from its file search store.

        Args:
            name: Document resource name ("fileSearchStores/x/documents/y")

        Returns:
            True if deleted, False if it was already gone upstream

        Raises:
            UpstreamError: For any other upstream failure
        """
        try:
            await self.client.aio.file_search_stores.documents.delete(
                name=name,
                config={"force": True},
            )
        except Exception as e:
            if _status_code(e) == 404:
                logger.info(f"Document {name} already absent upstream")
                return False
            logger.error(f"Error deleting document {name}: {e}", exc_info=True)
            raise wrap_upstream_error(e, "gemini") from e
        logger.info(f"Deleted upstream document {name}")
        return True


def _status_code(error: Exception) -> Optional[int]:
    code = getattr(error, "code", None)
    if isinstance(code, int):
        return code
    status = getattr(error, "status_code", None)
    return status if isinstance(status, int) else None
