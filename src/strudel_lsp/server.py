from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Callable
from urllib.parse import unquote, urlparse

from pygls.lsp.server import LanguageServer
from lsprotocol.types import (
    COMPLETION_ITEM_RESOLVE,
    INITIALIZE,
    INITIALIZED,
    SHUTDOWN,
    TEXT_DOCUMENT_CODE_ACTION,
    TEXT_DOCUMENT_COMPLETION,
    TEXT_DOCUMENT_DID_CHANGE,
    TEXT_DOCUMENT_DID_CLOSE,
    TEXT_DOCUMENT_DID_OPEN,
    TEXT_DOCUMENT_HOVER,
    TEXT_DOCUMENT_SIGNATURE_HELP,
    CodeAction,
    CodeActionKind,
    CodeActionOptions,
    CodeActionParams,
    CompletionItem,
    CompletionOptions,
    CompletionParams,
    DidChangeTextDocumentParams,
    DidCloseTextDocumentParams,
    DidOpenTextDocumentParams,
    Hover,
    HoverParams,
    InitializedParams,
    InitializeParams,
    LogMessageParams,
    MessageType,
    PublishDiagnosticsParams,
    SignatureHelp,
    SignatureHelpOptions,
    SignatureHelpParams,
    TextDocumentSyncKind,
)

from strudel_lsp import __version__, catalog, handlers
from strudel_lsp.config import ServerSettings, load_settings, resolve_log_level
from strudel_lsp.diagnostics import DiagnosticEngine, PublishedState
from strudel_lsp.discovery import EngineStateFile
from strudel_lsp.engine_client import EngineDiscovery, EngineSyncClient, OpenConnection
from strudel_lsp.exceptions import ConfigError
from strudel_lsp.notation import MiniParser, NodeMiniParser, NotationDelegate
from strudel_lsp.vocabulary import VocabularyRegistry

logger = logging.getLogger(__name__)

COMPLETION_TRIGGERS = ['"', "'", " ", ":", "(", ".", ","]
SIGNATURE_TRIGGERS = ["(", ","]
SIGNATURE_RETRIGGERS = [","]


def _uri_to_path(uri: str) -> Path:
    parsed = urlparse(uri)
    if parsed.scheme == "file":
        return Path(unquote(parsed.path))
    return Path(uri)


def apply_log_level(level: str) -> None:
    logging.getLogger("strudel_lsp").setLevel(resolve_log_level(level))


def build_parser(settings: ServerSettings, cwd: str | None = None) -> NodeMiniParser:
    return NodeMiniParser(
        command=settings.parser.command,
        module=settings.parser.module,
        timeout=settings.parser.timeout,
        restart_delay=settings.parser.restart_delay,
        cwd=cwd,
    )


def build_registry(settings: ServerSettings) -> VocabularyRegistry:
    return VocabularyRegistry(
        default_samples=[*catalog.DEFAULT_SAMPLE_NAMES, *settings.extra_samples],
        non_sample_functions=settings.non_sample_functions,
    )


class StrudelLanguageServer(LanguageServer):
    """pygls server owning the vocabulary, diagnostics and engine connection."""

    def __init__(
        self,
        settings: ServerSettings | None = None,
        *,
        parser: MiniParser | None = None,
        discovery: EngineDiscovery | None = None,
        open_connection: OpenConnection = asyncio.open_connection,
    ) -> None:
        super().__init__(
            "strudel-lsp",
            __version__,
            text_document_sync_kind=TextDocumentSyncKind.Incremental,
        )
        self.settings_pinned = settings is not None
        self._parser_override = parser
        self._discovery_override = discovery
        self._open_connection = open_connection
        self.configure(settings or ServerSettings())

    def configure(self, settings: ServerSettings, *, root: Path | None = None) -> None:
        """(Re)build every collaborator from ``settings``; the engine must not be running."""
        self.settings = settings
        self.registry = build_registry(settings)
        self.parser = self._parser_override or build_parser(
            settings, cwd=str(root) if root is not None else None
        )
        self.delegate = NotationDelegate(self.parser)
        self.diagnostic_engine = DiagnosticEngine(self.registry, self.delegate)
        self.published = PublishedState()
        self.engine = EngineSyncClient(
            self.registry,
            self._discovery_override or EngineStateFile(settings.engine.state_file),
            host=settings.engine.host,
            settle_delay=settings.engine.settle_delay,
            poll_interval=settings.engine.poll_interval,
            on_vocabulary_changed=self.revalidate_all,
            open_connection=self._open_connection,
        )

    def validate(self, uri: str) -> None:
        document = self.workspace.get_text_document(uri)
        result = self.diagnostic_engine.validate(
            document.source, document.position_codec
        )
        self.published.publish(uri, result)
        self.text_document_publish_diagnostics(
            PublishDiagnosticsParams(uri=uri, diagnostics=list(result.diagnostics))
        )

    def revalidate_all(self) -> None:
        for uri in list(self.workspace.text_documents):
            self.validate(uri)

    def forget(self, uri: str) -> None:
        self.published.drop(uri)
        self.text_document_publish_diagnostics(
            PublishDiagnosticsParams(uri=uri, diagnostics=[])
        )

    def stop_engine(self) -> None:
        self.engine.shutdown()
        close_parser = getattr(self.parser, "close", None)
        if close_parser is not None:
            close_parser()


server = StrudelLanguageServer()


@server.feature(INITIALIZE)
def initialize(ls: StrudelLanguageServer, params: InitializeParams) -> None:
    if params.root_uri and not ls.settings_pinned:
        root = _uri_to_path(params.root_uri)
        try:
            ls.configure(load_settings(root=root), root=root)
        except ConfigError as exc:
            logger.warning("ignoring workspace configuration: %s", exc)
    options = params.initialization_options
    level = options.get("logLevel") if isinstance(options, dict) else None
    try:
        apply_log_level(str(level or ls.settings.log_level))
    except ConfigError as exc:
        logger.warning("%s", exc)


@server.feature(INITIALIZED)
async def initialized(ls: StrudelLanguageServer, params: InitializedParams) -> None:
    ls.window_log_message(
        LogMessageParams(type=MessageType.Info, message="Strudel LSP initialized")
    )
    ls.engine.start()


@server.feature(SHUTDOWN)
def shutdown(ls: StrudelLanguageServer, params: None = None) -> None:
    ls.stop_engine()


@server.feature(TEXT_DOCUMENT_DID_OPEN)
def did_open(ls: StrudelLanguageServer, params: DidOpenTextDocumentParams) -> None:
    ls.validate(params.text_document.uri)


@server.feature(TEXT_DOCUMENT_DID_CHANGE)
def did_change(ls: StrudelLanguageServer, params: DidChangeTextDocumentParams) -> None:
    ls.validate(params.text_document.uri)


@server.feature(TEXT_DOCUMENT_DID_CLOSE)
def did_close(ls: StrudelLanguageServer, params: DidCloseTextDocumentParams) -> None:
    ls.forget(params.text_document.uri)


@server.feature(
    TEXT_DOCUMENT_COMPLETION,
    CompletionOptions(trigger_characters=COMPLETION_TRIGGERS, resolve_provider=True),
)
def completion(ls: StrudelLanguageServer, params: CompletionParams) -> list[CompletionItem]:
    document = ls.workspace.get_text_document(params.text_document.uri)
    return handlers.complete(
        document.source, params.position, ls.registry, document.position_codec
    )


@server.feature(COMPLETION_ITEM_RESOLVE)
def completion_resolve(ls: StrudelLanguageServer, item: CompletionItem) -> CompletionItem:
    return handlers.resolve_completion(item)


@server.feature(TEXT_DOCUMENT_HOVER)
def hover(ls: StrudelLanguageServer, params: HoverParams) -> Hover | None:
    document = ls.workspace.get_text_document(params.text_document.uri)
    return handlers.hover(
        document.source, params.position, ls.registry, document.position_codec
    )


@server.feature(
    TEXT_DOCUMENT_SIGNATURE_HELP,
    SignatureHelpOptions(
        trigger_characters=SIGNATURE_TRIGGERS,
        retrigger_characters=SIGNATURE_RETRIGGERS,
    ),
)
def signature_help(
    ls: StrudelLanguageServer, params: SignatureHelpParams
) -> SignatureHelp | None:
    document = ls.workspace.get_text_document(params.text_document.uri)
    return handlers.signature_help(
        document.source, params.position, ls.registry, document.position_codec
    )


@server.feature(
    TEXT_DOCUMENT_CODE_ACTION,
    CodeActionOptions(code_action_kinds=[CodeActionKind.QuickFix]),
)
def code_action(ls: StrudelLanguageServer, params: CodeActionParams) -> list[CodeAction]:
    return handlers.code_actions(
        params.text_document.uri, params.context.diagnostics, ls.published
    )


def start(start_fn: Callable[[], None] | None = None) -> None:
    """Start the language server on stdio."""
    (start_fn or server.start_io)()


def start_tcp(host: str, port: int) -> None:
    server.start_tcp(host, port)


if __name__ == "__main__":  # pragma: no cover
    start()  # pragma: no cover
