"""RAG tool handlers and the registry they are published through."""

import logging
from typing import Any, Dict, List, Optional

from rag_gateway.adapters.gemini_documents import GeminiDocumentService
from rag_gateway.adapters.gemini_search import GeminiSearchClient
from rag_gateway.infra.background import BackgroundTaskSet
from rag_gateway.models.store import DocumentRecord, KnowledgeStore, TenantSettings
from rag_gateway.models.tool import ArgField, ArgKind, ToolDefinition, ToolResult
from rag_gateway.services.tenant_data import (
    TenantDataService,
    ToolError,
    split_document_name,
)
from rag_gateway.services.tool_registry import ToolRegistry

logger = logging.getLogger(__name__)

SERVER_NAME = "gemini-rag"
DEFAULT_DOCUMENT_LIMIT = 50
MAX_DOCUMENT_LIMIT = 500

SUMMARY_PROMPT = (
    "Please provide a comprehensive summary of all the documents in this store. "
    "Include the main topics, key points, and important details."
)
FOCUSED_SUMMARY_PROMPT = "Please provide a detailed summary of all documents, focusing specifically on: {focus}"

_MODEL_FIELD = ArgField("model", ArgKind.STRING, description="Gemini model (default: your active model, else gemini-2.5-flash)")


def _format_size(size: int) -> str:
    if size <= 0:
        return ""
    if size < 1024:
        return f"{size} B"
    if size < 1024 * 1024:
        return f"{size / 1024:.1f} KB"
    return f"{size / (1024 * 1024):.1f} MB"


def _format_document(index: int, document: DocumentRecord) -> str:
    details = ", ".join(part for part in (document.mime_type, _format_size(document.size)) if part)
    header = f"{index}. {document.display_name}"
    if details:
        header += f" ({details})"
    return f"{header}\n   ID: {document.id}"


class RagToolset:
    """
    Handlers for every published tool.

    Each handler takes the validated arguments and the session's tenant id
    and returns a ToolResult. In-band failures are raised as ToolError or
    UpstreamError and rendered by the protocol engine.
    """

    def __init__(
        self,
        tenant_data: TenantDataService,
        search_client: GeminiSearchClient,
        document_service: GeminiDocumentService,
        background: BackgroundTaskSet,
        default_model: str = "gemini-2.5-flash",
        public_base_url: str = "http://localhost:3000",
    ):
        self.tenant_data = tenant_data
        self.search_client = search_client
        self.document_service = document_service
        self.background = background
        self.default_model = default_model
        self.public_base_url = public_base_url.rstrip("/")

    def _model(self, args: Dict[str, Any], settings: TenantSettings) -> str:
        return args.get("model") or settings.active_model or self.default_model

    async def _ask(self, query: str, stores: List[KnowledgeStore], args: Dict[str, Any], settings: TenantSettings) -> ToolResult:
        result = await self.search_client.search(
            query,
            [store.handle for store in stores],
            self._model(args, settings),
            system_prompt=settings.system_prompt,
        )
        return ToolResult.success(result.text)

    # Chat

    async def chat(self, args: Dict[str, Any], tenant_id: Optional[str]) -> ToolResult:
        settings = await self.tenant_data.get_settings(tenant_id)
        store = await self.tenant_data.resolve_target_store(tenant_id, args.get("storeId"), settings)
        return await self._ask(args["message"], [store], args, settings)

    async def chat_with_store(self, args: Dict[str, Any], tenant_id: Optional[str]) -> ToolResult:
        store = await self.tenant_data.resolve_store(tenant_id, args["storeId"])
        settings = await self.tenant_data.get_settings(tenant_id)
        return await self._ask(args["message"], [store], args, settings)

    async def chat_all_stores(self, args: Dict[str, Any], tenant_id: Optional[str]) -> ToolResult:
        stores = await self.tenant_data.list_stores(tenant_id)
        if not stores:
            raise ToolError("No stores found. Create a store and upload documents in the Gemini RAG UI first.")
        settings = await self.tenant_data.get_settings(tenant_id)
        return await self._ask(args["message"], stores, args, settings)

    async def summarize(self, args: Dict[str, Any], tenant_id: Optional[str]) -> ToolResult:
        settings = await self.tenant_data.get_settings(tenant_id)
        store = await self.tenant_data.resolve_target_store(tenant_id, args.get("storeId"), settings)
        focus = (args.get("focus") or "").strip()
        prompt = FOCUSED_SUMMARY_PROMPT.format(focus=focus) if focus else SUMMARY_PROMPT
        return await self._ask(prompt, [store], args, settings)

    # Stores

    async def list_stores(self, args: Dict[str, Any], tenant_id: Optional[str]) -> ToolResult:
        stores = await self.tenant_data.list_stores(tenant_id)
        if not stores:
            return ToolResult.success("No stores found. Create a store in the Gemini RAG UI to get started.")
        settings = await self.tenant_data.get_settings(tenant_id)
        active = settings.active_store_id

        lines = []
        for store in stores:
            marker = "★ " if active in (store.id, store.name) else "  "
            lines.append(f"{marker}{store.display_name}\n   ID: {store.id} · {store.document_count} document(s)")
        return ToolResult.success(f"{len(stores)} store(s) (★ = active):\n\n" + "\n\n".join(lines))

    async def get_active_store(self, args: Dict[str, Any], tenant_id: Optional[str]) -> ToolResult:
        settings = await self.tenant_data.get_settings(tenant_id)
        if not settings.active_store_id:
            return ToolResult.success("No active store set. Use set_active_store to choose one.")
        store = await self.tenant_data.resolve_target_store(tenant_id, None, settings)
        return ToolResult.success(
            f"Active store: {store.display_name}\nID: {store.id}\nDocuments: {store.document_count}"
        )

    async def set_active_store(self, args: Dict[str, Any], tenant_id: Optional[str]) -> ToolResult:
        store = await self.tenant_data.set_active_store(tenant_id, args["storeId"])
        return ToolResult.success(f"✅ Active store set to: {store.display_name} ({store.id})")

    # Documents

    async def list_documents(self, args: Dict[str, Any], tenant_id: Optional[str]) -> ToolResult:
        store = await self.tenant_data.resolve_target_store(tenant_id, args.get("storeId"))
        limit = args.get("limit")
        if limit is None:
            limit = DEFAULT_DOCUMENT_LIMIT
        limit = max(1, min(limit, MAX_DOCUMENT_LIMIT))

        documents = await self.tenant_data.list_documents(tenant_id, store, limit=limit)
        if not documents:
            return ToolResult.success(f'No documents in store "{store.display_name}" ({store.id}).')
        lines = [_format_document(i, document) for i, document in enumerate(documents, start=1)]
        return ToolResult.success(
            f'{len(documents)} document(s) in "{store.display_name}":\n\n' + "\n\n".join(lines)
        )

    async def _locate_document(self, args: Dict[str, Any], tenant_id: Optional[str]) -> DocumentRecord:
        reference = args["documentId"].strip()
        parsed = split_document_name(reference)
        if parsed:
            store = await self.tenant_data.get_owned_store(tenant_id, parsed[0])
        else:
            store = await self.tenant_data.resolve_target_store(tenant_id, args.get("storeId"))
        return await self.tenant_data.find_document(tenant_id, store, reference)

    async def delete_document(self, args: Dict[str, Any], tenant_id: Optional[str]) -> ToolResult:
        document = await self._locate_document(args, tenant_id)

        note = ""
        if document.name:
            deleted_upstream = await self.document_service.delete_document(document.name)
            if not deleted_upstream:
                note = " (it was already gone from the search index)"

        await self.tenant_data.delete_document_record(tenant_id, document)
        self.background.spawn(
            self.tenant_data.decrement_document_count(tenant_id, document.store_id),
            name="decrement_document_count",
        )
        logger.info(f"Tenant {tenant_id} deleted document {document.id} from store {document.store_id}")
        return ToolResult.success(f"✅ Deleted: {document.display_name} ({document.id}){note}")

    async def get_document_link(self, args: Dict[str, Any], tenant_id: Optional[str]) -> ToolResult:
        document = await self._locate_document(args, tenant_id)
        url = f"{self.public_base_url}/api/stores/{document.store_id}/documents/{document.id}/download"
        return ToolResult.success(f"{document.display_name}\n{url}")


def build_tool_definitions(toolset: RagToolset) -> List[ToolDefinition]:
    """All tools in publication order, `help` last."""
    message = ArgField("message", ArgKind.STRING, required=True, description="Your question or message to answer using the documents")
    optional_store = ArgField("storeId", ArgKind.STRING, description="Store ID or display name. Uses your active store if omitted.")
    document_id = ArgField("documentId", ArgKind.STRING, required=True, description="Document ID or full document name")

    tools = [
        ToolDefinition(
            name="chat",
            description="Chat with your documents. Asks a question and gets an answer grounded in your uploaded files, with sources. Uses your active store by default.",
            handler=toolset.chat,
            fields=(message, optional_store, _MODEL_FIELD),
        ),
        ToolDefinition(
            name="chat_with_store",
            description="Chat with documents in a specific store by its ID or display name (partial names match).",
            handler=toolset.chat_with_store,
            fields=(
                message,
                ArgField("storeId", ArgKind.STRING, required=True, description="Store ID or display name (e.g. 'My Docs' or 'koko-abc123')"),
                _MODEL_FIELD,
            ),
        ),
        ToolDefinition(
            name="chat_all_stores",
            description="Ask a question and search across ALL of your document stores simultaneously.",
            handler=toolset.chat_all_stores,
            fields=(message, _MODEL_FIELD),
        ),
        ToolDefinition(
            name="list_stores",
            description="List all of your document stores with their IDs and names. The active store is marked with ★.",
            handler=toolset.list_stores,
        ),
        ToolDefinition(
            name="get_active_store",
            description="Returns the currently active document store (the one used by default when you call chat).",
            handler=toolset.get_active_store,
        ),
        ToolDefinition(
            name="set_active_store",
            description="Set the active document store. Changes take effect immediately and sync with the Gemini RAG UI.",
            handler=toolset.set_active_store,
            fields=(ArgField("storeId", ArgKind.STRING, required=True, description="Store ID or display name (partial match supported)"),),
        ),
        ToolDefinition(
            name="list_documents",
            description="List the documents/files uploaded to a store. Uses the active store if storeId is not provided.",
            handler=toolset.list_documents,
            fields=(
                optional_store,
                ArgField("limit", ArgKind.INTEGER, default=DEFAULT_DOCUMENT_LIMIT, description=f"Max results (default {DEFAULT_DOCUMENT_LIMIT})"),
            ),
        ),
        ToolDefinition(
            name="summarize",
            description="Generate a summary of all documents in a store. Uses the active store if storeId is not provided.",
            handler=toolset.summarize,
            fields=(
                optional_store,
                ArgField("focus", ArgKind.STRING, description="Optional: specific topic or aspect to focus the summary on"),
                _MODEL_FIELD,
            ),
        ),
        ToolDefinition(
            name="delete_document",
            description="Permanently delete a document from a store. This cannot be undone.",
            handler=toolset.delete_document,
            fields=(document_id, optional_store),
        ),
        ToolDefinition(
            name="get_document_link",
            description="Get a download link for an uploaded document.",
            handler=toolset.get_document_link,
            fields=(document_id, optional_store),
        ),
    ]

    help_text = render_help(tools)

    async def show_help(args: Dict[str, Any], tenant_id: Optional[str]) -> ToolResult:
        return ToolResult.success(help_text)

    tools.append(
        ToolDefinition(
            name="help",
            description="List all available tools and how to use this MCP server.",
            handler=show_help,
            tenant_scoped=False,
        )
    )
    return tools


def render_help(tools: List[ToolDefinition]) -> str:
    width = max(len(tool.name) for tool in tools) + 2
    lines = [f"{tool.name.ljust(width)}{tool.description}" for tool in tools]
    return (
        "Gemini RAG MCP Server\n"
        "=====================\n\n"
        + "\n".join(lines)
        + f"\n{'help'.ljust(width)}This message"
        + "\n\nTip: start with list_stores, then call chat to ask questions."
    )


def build_tool_registry(toolset: RagToolset) -> ToolRegistry:
    return ToolRegistry(build_tool_definitions(toolset))
