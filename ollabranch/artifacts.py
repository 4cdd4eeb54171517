from __future__ import annotations

"""Find diagram and command blocks embedded in generated text.

Recognised blocks, tried in this priority order:

* PlantUML – ``@startuml`` … ``@enduml``
* SVG      – ``<`` … ``</svg>``
* GraphViz – ``digraph`` … ``}``

A block runs from the *first* start token to the *last* end token in the
text, so one pass may swallow several blocks of the same kind (renderers
downstream cope with that).  Only the highest-priority block is cut out per
pass; scanning then continues on what is left.  When no diagram matches, text
holding a ``$@`` … ``@$`` pair is returned whole as one command block.

The scanner is pure: no state survives between calls.
"""

from enum import Enum
from typing import List, NamedTuple, Optional, Tuple

from pydantic import BaseModel, ConfigDict


class ArtifactKind(str, Enum):
    UML = "uml"
    SVG = "svg"
    DOT = "dot"
    COMMAND = "command"


class Grammar(NamedTuple):
    kind: ArtifactKind
    start: str
    end: str


DIAGRAM_GRAMMARS: Tuple[Grammar, ...] = (
    Grammar(ArtifactKind.UML, "@startuml", "@enduml"),
    Grammar(ArtifactKind.SVG, "<", "</svg>"),
    Grammar(ArtifactKind.DOT, "digraph", "}"),
)

COMMAND_START = "$@"
COMMAND_END = "@$"


class Artifact(BaseModel):
    """A recognised block.

    ``start``/``end`` index the original input.  When earlier extractions
    removed text from inside this block's span, ``text`` is the block as seen
    after that removal while ``start``/``end`` still enclose it in the input.
    """

    model_config = ConfigDict(frozen=True)

    kind: ArtifactKind
    text: str
    start: int
    end: int


def find_span(text: str, start_token: str, end_token: str) -> Optional[Tuple[int, int]]:
    """Half-open span from the first *start_token* to the end of the last *end_token*."""
    start = text.find(start_token)
    if start < 0:
        return None
    end = text.rfind(end_token)
    if end < start:
        return None
    return start, end + len(end_token)


def has_command_block(text: str) -> bool:
    start = text.find(COMMAND_START)
    return start >= 0 and text.find(COMMAND_END, start + len(COMMAND_START)) >= 0


def scan(text: str) -> List[Artifact]:
    """Return the blocks found in *text*, in extraction order."""
    artifacts: List[Artifact] = []
    remaining = text
    # origin[i] is the index in *text* of remaining[i]
    origin = list(range(len(text)))

    while remaining.strip():
        match = None
        for grammar in DIAGRAM_GRAMMARS:
            span = find_span(remaining, grammar.start, grammar.end)
            if span is not None:
                match = grammar, span
                break

        if match is None:
            if has_command_block(remaining):
                artifacts.append(
                    Artifact(kind=ArtifactKind.COMMAND, text=remaining, start=origin[0], end=origin[-1] + 1)
                )
            break

        grammar, (lo, hi) = match
        artifacts.append(
            Artifact(kind=grammar.kind, text=remaining[lo:hi], start=origin[lo], end=origin[hi - 1] + 1)
        )
        remaining = remaining[:lo] + remaining[hi:]
        del origin[lo:hi]

    return artifacts
