"""Completion, hover, signature help and quick fixes.

Everything here only reads the vocabulary registry and the latest published
diagnostics; the functions take plain text and positions so they can be used
without a running server.
"""

from __future__ import annotations

import re
from typing import Sequence

from lsprotocol.types import (
    CodeAction,
    CodeActionKind,
    CompletionItem,
    CompletionItemKind,
    Diagnostic,
    Hover,
    InsertTextFormat,
    MarkupContent,
    MarkupKind,
    ParameterInformation,
    Position,
    SignatureHelp,
    SignatureInformation,
    TextEdit,
    WorkspaceEdit,
)
from pygls.workspace import PositionCodec

from strudel_lsp import catalog
from strudel_lsp.diagnostics import SOURCE, PublishedState, position_key
from strudel_lsp.scanner import (
    LineIndex,
    current_word,
    find_enclosing_call,
    find_enclosing_literal,
)
from strudel_lsp.schema import FunctionDTO
from strudel_lsp.vocabulary import VocabularyRegistry

SAMPLE_VARIANTS = 16
_LOOKBEHIND = 50
_DIGITS_RE = re.compile(r"[0-9]")


def _markdown(value: str) -> MarkupContent:
    return MarkupContent(kind=MarkupKind.Markdown, value=value)


def _function_markdown(function: FunctionDTO) -> str:
    if not function.signatures:
        return function.documentation
    return f"{function.documentation}\n\n```javascript\n{function.signatures[0].label}\n```"


def _variant_items() -> list[CompletionItem]:
    return [
        CompletionItem(
            label=str(index),
            kind=CompletionItemKind.Value,
            detail=f"Sample variant {index}",
            sort_text=f"{index:02d}",
        )
        for index in range(SAMPLE_VARIANTS)
    ]


def _notation_items(registry: VocabularyRegistry) -> list[CompletionItem]:
    items = [
        CompletionItem(
            label=sample,
            kind=CompletionItemKind.Value,
            detail="Sample",
            documentation=f"Play {sample} sound",
        )
        for sample in registry.samples
    ]
    for note in catalog.NOTE_NAMES:
        for octave in catalog.OCTAVES:
            items.append(
                CompletionItem(
                    label=f"{note}{octave}",
                    kind=CompletionItemKind.Value,
                    detail="Note",
                    documentation=f"Note {note.upper()}{octave}",
                    sort_text=f"1{note}{octave}",
                )
            )
    for operator in catalog.MINI_OPERATORS:
        items.append(
            CompletionItem(
                label=operator.label,
                kind=CompletionItemKind.Operator,
                detail=operator.detail,
                documentation=operator.documentation,
                sort_text=f"2{operator.label}",
            )
        )
    return items


def _code_items(registry: VocabularyRegistry, before_cursor: str) -> list[CompletionItem]:
    items = [
        CompletionItem(
            label=function.name,
            kind=CompletionItemKind.Function,
            detail=function.detail,
            documentation=_markdown(_function_markdown(function)),
            insert_text=f"{function.name}($1)",
            insert_text_format=InsertTextFormat.Snippet,
        )
        for function in registry.functions
    ]
    for scale in catalog.SCALE_NAMES:
        items.append(
            CompletionItem(
                label=scale,
                kind=CompletionItemKind.Enum,
                detail="Scale",
                documentation=f"{scale} scale",
            )
        )
    if ".bank(" in before_cursor:
        for bank in registry.banks:
            items.append(
                CompletionItem(
                    label=bank,
                    kind=CompletionItemKind.Module,
                    detail="Sample bank",
                    documentation=f"Use {bank} drum machine samples",
                )
            )
    return items


def complete(
    text: str,
    position: Position,
    registry: VocabularyRegistry,
    codec: PositionCodec | None = None,
) -> list[CompletionItem]:
    offset = LineIndex(text, codec).offset_at(position)
    literal = find_enclosing_literal(text, offset)
    if literal is not None:
        before_cursor = literal.raw_body[: offset - literal.body_start]
        if before_cursor.endswith(":"):
            return _variant_items()
        return _notation_items(registry)
    return _code_items(registry, text[max(0, offset - _LOOKBEHIND) : offset])


def resolve_completion(item: CompletionItem) -> CompletionItem:
    return item


def _hover_for_word(word: str, registry: VocabularyRegistry) -> str | None:
    if registry.is_sample(word):
        return (
            f"**{word}** - Sample\n\nPlay the {word} sound.\n\n"
            f'```javascript\ns("{word}")\n```'
        )
    note = _DIGITS_RE.sub("", word)
    if note in catalog.NOTE_NAMES:
        octave = "".join(_DIGITS_RE.findall(word))
        return (
            f"**{word}** - Note\n\nMusical note {note.upper()}{octave}.\n\n"
            f'```javascript\nnote("{word}")\n```'
        )
    function = registry.function(word)
    if function is not None:
        labels = "\n".join(signature.label for signature in function.signatures)
        return (
            f"**{function.name}** - {function.detail}\n\n{function.documentation}\n\n"
            f"```javascript\n{labels}\n```"
        )
    if word in catalog.SCALE_NAMES:
        return f'**{word}** - Scale\n\nMusical scale.\n\n```javascript\n.scale("{word}")\n```'
    if registry.is_bank(word):
        return (
            f"**{word}** - Sample Bank\n\nDrum machine sample bank.\n\n"
            f'```javascript\n.bank("{word}")\n```'
        )
    return None


def _hover_for_operator(char: str) -> str | None:
    for operator in catalog.MINI_OPERATORS:
        if char and char in operator.label:
            return f"**{operator.label}** - {operator.detail}\n\n{operator.documentation}"
    return None


def hover(
    text: str,
    position: Position,
    registry: VocabularyRegistry,
    codec: PositionCodec | None = None,
) -> Hover | None:
    offset = LineIndex(text, codec).offset_at(position)
    word = current_word(text, offset)
    if word:
        value = _hover_for_word(word, registry)
    elif find_enclosing_literal(text, offset) is not None:
        value = _hover_for_operator(text[offset : offset + 1])
    else:
        value = None
    if value is None:
        return None
    return Hover(contents=_markdown(value))


def signature_help(
    text: str,
    position: Position,
    registry: VocabularyRegistry,
    codec: PositionCodec | None = None,
) -> SignatureHelp | None:
    offset = LineIndex(text, codec).offset_at(position)
    call = find_enclosing_call(text, offset)
    if call is None:
        return None
    function = registry.function(call.name)
    if function is None or not function.signatures:
        return None
    signatures = [
        SignatureInformation(
            label=signature.label,
            documentation=signature.documentation or function.documentation,
            parameters=[
                ParameterInformation(
                    label=parameter.label,
                    documentation=_markdown(parameter.documentation),
                )
                for parameter in signature.parameters
            ],
        )
        for signature in function.signatures
    ]
    active = 0
    for index, signature in enumerate(function.signatures):
        if len(signature.parameters) > call.arg_index:
            active = index
            break
    last_parameter = len(function.signatures[active].parameters) - 1
    return SignatureHelp(
        signatures=signatures,
        active_signature=active,
        active_parameter=max(0, min(call.arg_index, last_parameter)),
    )


def code_actions(
    uri: str, diagnostics: Sequence[Diagnostic], published: PublishedState
) -> list[CodeAction]:
    actions: list[CodeAction] = []
    for diagnostic in diagnostics:
        if diagnostic.source != SOURCE:
            continue
        record = published.suggestion(uri, position_key(diagnostic.range.start))
        if record is None:
            continue
        for index, suggestion in enumerate(record.suggestions):
            actions.append(
                CodeAction(
                    title=f"Replace with '{suggestion}'",
                    kind=CodeActionKind.QuickFix,
                    diagnostics=[diagnostic],
                    is_preferred=index == 0,
                    edit=WorkspaceEdit(
                        changes={uri: [TextEdit(range=diagnostic.range, new_text=suggestion)]}
                    ),
                )
            )
    return actions
