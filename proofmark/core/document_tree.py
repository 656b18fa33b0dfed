"""
Arena-backed document model hosting suggestion marks.

Nodes live in a dict keyed by integer id; parent/child links are ids, never
object references. The tree is ``root -> paragraph -> (text | mark)`` and a
mark holds one or more text nodes. Paragraph texts are joined with ``"\\n"``
to form the document text that analyzers see.
"""

import copy
from dataclasses import dataclass, field
from typing import Any, Callable, Literal, Protocol

from proofmark.core.logging import get_logger

logger = get_logger(__name__)

NodeKind = Literal["root", "paragraph", "text", "mark"]
EditOrigin = Literal["user", "engine"]


@dataclass
class Node:
    id: int
    kind: NodeKind
    parent: int | None = None
    children: list[int] = field(default_factory=list)
    text: str = ""
    suggestion_id: str | None = None
    suggestion_type: str | None = None


@dataclass(frozen=True)
class TextSegment:
    """One text node with its absolute offsets in the document text."""

    node_id: int
    start: int
    end: int
    text: str
    paragraph_id: int
    mark_id: int | None = None


@dataclass(frozen=True)
class Selection:
    anchor: int
    focus: int

    @property
    def start(self) -> int:
        return min(self.anchor, self.focus)

    @property
    def end(self) -> int:
        return max(self.anchor, self.focus)

    @property
    def is_collapsed(self) -> bool:
        return self.anchor == self.focus


@dataclass(frozen=True)
class TextEdit:
    """Replacement of ``[start, end)`` by ``inserted_length`` characters."""

    start: int
    end: int
    inserted_length: int
    origin: EditOrigin = "user"

    @property
    def delta(self) -> int:
        return self.inserted_length - (self.end - self.start)

    def map_offset(self, offset: int) -> int:
        """Where a cursor at ``offset`` ends up after this edit."""
        if offset < self.start:
            return offset
        if offset >= self.end:
            return offset + self.delta
        return self.start + self.inserted_length


class DocumentSurface(Protocol):
    """Capabilities the reconciler needs from a rich-text document."""

    def text_content(self) -> str: ...

    def text_segments(self) -> list[TextSegment]: ...

    def split_text(self, node_id: int, offset: int) -> int: ...

    def wrap(self, node_ids: list[int], suggestion_id: str, suggestion_type: str) -> int: ...

    def unwrap(self, mark_id: int) -> None: ...

    def find_mark(self, suggestion_id: str) -> int | None: ...

    def mark_text(self, mark_id: int) -> str: ...

    def get_selection(self) -> Selection | None: ...

    def set_selection(self, selection: Selection | None) -> None: ...

    def replace_text(self, start: int, end: int, new_text: str, origin: EditOrigin = "user") -> TextEdit: ...

    def checkpoint(self) -> Any: ...

    def restore(self, snapshot: Any) -> None: ...


# Selection endpoint: (node id, offset inside that node)
_Point = tuple[int, int]


class DocumentTree:
    """In-process implementation of :class:`DocumentSurface`."""

    def __init__(self):
        self._nodes: dict[int, Node] = {}
        self._next_id = 0
        self.root_id = self._new_node("root").id
        self._selection: tuple[_Point, _Point] | None = None
        self._listeners: list[Callable[[TextEdit], None]] = []
        self.version = 0

    @classmethod
    def from_text(cls, text: str = "") -> "DocumentTree":
        tree = cls()
        root = tree._nodes[tree.root_id]
        for line in text.split("\n"):
            paragraph = tree._new_node("paragraph", parent=tree.root_id)
            root.children.append(paragraph.id)
            if line:
                node = tree._new_node("text", parent=paragraph.id, text=line)
                paragraph.children.append(node.id)
        return tree

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    def node(self, node_id: int) -> Node:
        return self._nodes[node_id]

    def __contains__(self, node_id: int) -> bool:
        return node_id in self._nodes

    def paragraphs(self) -> list[int]:
        return list(self._nodes[self.root_id].children)

    def text_content(self) -> str:
        return "\n".join(self._inline_text(pid) for pid in self.paragraphs())

    def text_segments(self) -> list[TextSegment]:
        """All text nodes in document order with absolute offsets."""
        segments: list[TextSegment] = []
        offset = 0
        for index, paragraph_id in enumerate(self.paragraphs()):
            if index:
                offset += 1  # paragraph separator
            for child_id in self._nodes[paragraph_id].children:
                child = self._nodes[child_id]
                if child.kind == "text":
                    segments.append(
                        TextSegment(child_id, offset, offset + len(child.text), child.text, paragraph_id)
                    )
                    offset += len(child.text)
                    continue
                for grandchild_id in child.children:
                    grandchild = self._nodes[grandchild_id]
                    segments.append(
                        TextSegment(
                            grandchild_id,
                            offset,
                            offset + len(grandchild.text),
                            grandchild.text,
                            paragraph_id,
                            mark_id=child_id,
                        )
                    )
                    offset += len(grandchild.text)
        return segments

    def find_mark(self, suggestion_id: str) -> int | None:
        for node in self._nodes.values():
            if node.kind == "mark" and node.suggestion_id == suggestion_id:
                return node.id
        return None

    def marks(self) -> dict[str, int]:
        """suggestion id -> mark node id."""
        return {
            node.suggestion_id: node.id
            for node in self._nodes.values()
            if node.kind == "mark" and node.suggestion_id is not None
        }

    def mark_range(self, mark_id: int) -> tuple[int, int]:
        covered = [s for s in self.text_segments() if s.mark_id == mark_id]
        if not covered:
            raise KeyError(f"Mark {mark_id} not found")
        return covered[0].start, covered[-1].end

    def mark_text(self, mark_id: int) -> str:
        node = self._nodes.get(mark_id)
        if node is None or node.kind != "mark":
            raise KeyError(f"Mark {mark_id} not found")
        return "".join(self._nodes[cid].text for cid in node.children)

    # ------------------------------------------------------------------
    # Structural operations
    # ------------------------------------------------------------------

    def split_text(self, node_id: int, offset: int) -> int:
        """
        Split a text node at a local offset.

        Returns the id of the new right-hand node.

        Raises:
            ValueError: If the node is not text or the offset is not interior
        """
        node = self._nodes[node_id]
        if node.kind != "text":
            raise ValueError(f"Node {node_id} is not a text node")
        if not 0 < offset < len(node.text):
            raise ValueError(f"Split offset {offset} not inside node {node_id} (length {len(node.text)})")

        right = self._new_node("text", parent=node.parent, text=node.text[offset:])
        node.text = node.text[:offset]
        siblings = self._nodes[node.parent].children
        siblings.insert(siblings.index(node_id) + 1, right.id)

        self._move_points(node_id, lambda o: (right.id, o - offset) if o > offset else (node_id, o))
        return right.id

    def split_at(self, offset: int) -> None:
        """Make sure a segment boundary exists at absolute ``offset``."""
        for segment in self.text_segments():
            if segment.start < offset < segment.end:
                self.split_text(segment.node_id, offset - segment.start)
                return

    def wrap(self, node_ids: list[int], suggestion_id: str, suggestion_type: str) -> int:
        """
        Wrap contiguous sibling text nodes in a mark.

        Raises:
            ValueError: If the nodes are not contiguous plain-text siblings
        """
        if not node_ids:
            raise ValueError("Nothing to wrap")

        parent_id = self._nodes[node_ids[0]].parent
        parent = self._nodes[parent_id]
        if parent.kind != "paragraph":
            raise ValueError("Marks cannot nest")

        for node_id in node_ids:
            node = self._nodes[node_id]
            if node.kind != "text" or node.parent != parent_id:
                raise ValueError(f"Node {node_id} is not a text sibling of {node_ids[0]}")

        first = parent.children.index(node_ids[0])
        if parent.children[first : first + len(node_ids)] != list(node_ids):
            raise ValueError("Nodes to wrap are not contiguous")

        mark = self._new_node(
            "mark", parent=parent_id, suggestion_id=suggestion_id, suggestion_type=suggestion_type
        )
        mark.children = list(node_ids)
        for node_id in node_ids:
            self._nodes[node_id].parent = mark.id
        parent.children[first : first + len(node_ids)] = [mark.id]
        return mark.id

    def unwrap(self, mark_id: int) -> None:
        """Replace a mark by its text children, merging adjacent text."""
        mark = self._nodes.get(mark_id)
        if mark is None or mark.kind != "mark":
            raise KeyError(f"Mark {mark_id} not found")

        parent = self._nodes[mark.parent]
        index = parent.children.index(mark_id)
        for child_id in mark.children:
            self._nodes[child_id].parent = parent.id
        parent.children[index : index + 1] = mark.children
        del self._nodes[mark_id]
        self._merge_adjacent(parent.id)

    # ------------------------------------------------------------------
    # Text edits
    # ------------------------------------------------------------------

    def replace_text(self, start: int, end: int, new_text: str, origin: EditOrigin = "user") -> TextEdit:
        """
        Replace ``[start, end)`` with ``new_text`` and notify listeners.

        An insertion on a mark boundary goes to the neighbouring plain text,
        so marks only change when the edit reaches inside them.
        """
        length = len(self.text_content())
        if not 0 <= start <= end <= length:
            raise ValueError(f"Edit range [{start}, {end}) outside document of length {length}")

        before = self.get_selection()
        self._delete_range(start, end)
        if new_text:
            self._insert_text(start, new_text)

        edit = TextEdit(start, end, len(new_text), origin)
        if before is not None:
            self.set_selection(Selection(edit.map_offset(before.anchor), edit.map_offset(before.focus)))

        self.version += 1
        for listener in list(self._listeners):
            listener(edit)
        return edit

    def add_update_listener(self, listener: Callable[[TextEdit], None]) -> Callable[[], None]:
        """Register a text-change listener. Returns an unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _delete_range(self, start: int, end: int) -> None:
        if start == end:
            return

        spans = self._paragraph_spans()
        first = self._paragraph_index_at(start, spans)
        last = self._paragraph_index_at(end, spans)

        self.split_at(start)
        self.split_at(end)
        for segment in self.text_segments():
            if segment.start >= start and segment.end <= end:
                self._remove_node(segment.node_id)

        target_id = spans[first][0]
        if first != last:
            target = self._nodes[target_id]
            for paragraph_id, _, _ in spans[first + 1 : last + 1]:
                paragraph = self._nodes[paragraph_id]
                for child_id in paragraph.children:
                    self._nodes[child_id].parent = target_id
                    target.children.append(child_id)
                paragraph.children = []
                self._remove_node(paragraph_id)
        self._merge_adjacent(target_id)

    def _insert_text(self, offset: int, new_text: str) -> None:
        lines = new_text.split("\n")
        spans = self._paragraph_spans()
        paragraph_id, paragraph_start, _ = spans[self._paragraph_index_at(offset, spans)]
        local = offset - paragraph_start

        if len(lines) == 1:
            self._insert_inline(paragraph_id, local, new_text)
            return

        # A line break cannot fall inside a mark
        for child_id in list(self._nodes[paragraph_id].children):
            child = self._nodes[child_id]
            if child.kind == "mark":
                mark_start, mark_end = self._local_range(paragraph_id, child_id)
                if mark_start < local < mark_end:
                    self.unwrap(child_id)
        self.split_at(offset)

        paragraph = self._nodes[paragraph_id]
        cut = self._child_index_at(paragraph_id, local)
        tail = paragraph.children[cut:]
        paragraph.children = paragraph.children[:cut]
        if lines[0]:
            self._insert_inline(paragraph_id, local, lines[0])

        root = self._nodes[self.root_id]
        position = root.children.index(paragraph_id) + 1
        for line in lines[1:]:
            new_paragraph = self._new_node("paragraph", parent=self.root_id)
            root.children.insert(position, new_paragraph.id)
            position += 1
            if line:
                text_node = self._new_node("text", parent=new_paragraph.id, text=line)
                new_paragraph.children.append(text_node.id)

        last_paragraph = self._nodes[root.children[position - 1]]
        for child_id in tail:
            self._nodes[child_id].parent = last_paragraph.id
            last_paragraph.children.append(child_id)
        self._merge_adjacent(last_paragraph.id)

    def _insert_inline(self, paragraph_id: int, local: int, text: str) -> None:
        paragraph = self._nodes[paragraph_id]
        cursor = 0
        for index, child_id in enumerate(paragraph.children):
            child = self._nodes[child_id]
            length = self._node_length(child_id)

            if cursor < local < cursor + length:
                inner = local - cursor
                if child.kind == "text":
                    child.text = child.text[:inner] + text + child.text[inner:]
                    return
                inner_cursor = 0
                for grandchild_id in child.children:
                    grandchild = self._nodes[grandchild_id]
                    if inner_cursor <= inner <= inner_cursor + len(grandchild.text):
                        at = inner - inner_cursor
                        grandchild.text = grandchild.text[:at] + text + grandchild.text[at:]
                        return
                    inner_cursor += len(grandchild.text)

            if cursor == local:
                self._insert_at_boundary(paragraph_id, index, text)
                return
            cursor += length

        self._insert_at_boundary(paragraph_id, len(paragraph.children), text)

    def _insert_at_boundary(self, paragraph_id: int, index: int, text: str) -> None:
        children = self._nodes[paragraph_id].children
        previous = self._nodes[children[index - 1]] if index > 0 else None
        following = self._nodes[children[index]] if index < len(children) else None

        if previous is not None and previous.kind == "text":
            previous.text += text
        elif following is not None and following.kind == "text":
            following.text = text + following.text
        else:
            node = self._new_node("text", parent=paragraph_id, text=text)
            children.insert(index, node.id)

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------

    def get_selection(self) -> Selection | None:
        if self._selection is None:
            return None
        anchor = self._offset_for(self._selection[0])
        focus = self._offset_for(self._selection[1])
        if anchor is None or focus is None:
            return None
        return Selection(anchor, focus)

    def set_selection(self, selection: Selection | None) -> None:
        if selection is None:
            self._selection = None
            return
        self._selection = (self._point_for(selection.anchor), self._point_for(selection.focus))

    def _point_for(self, offset: int) -> _Point:
        for paragraph_id, start, end in self._paragraph_spans():
            if not start <= offset <= end:
                continue
            for segment in self.text_segments():
                if segment.paragraph_id == paragraph_id and segment.start <= offset <= segment.end:
                    return segment.node_id, offset - segment.start
            return paragraph_id, 0
        raise ValueError(f"Offset {offset} outside document")

    def _offset_for(self, point: _Point) -> int | None:
        node_id, local = point
        node = self._nodes.get(node_id)
        if node is None:
            return None
        if node.kind == "paragraph":
            for paragraph_id, start, _ in self._paragraph_spans():
                if paragraph_id == node_id:
                    return start
            return None
        for segment in self.text_segments():
            if segment.node_id == node_id:
                return segment.start + min(local, len(segment.text))
        return None

    def _move_points(self, node_id: int, mover: Callable[[int], _Point]) -> None:
        if self._selection is None:
            return
        self._selection = tuple(  # type: ignore[assignment]
            mover(offset) if point_node == node_id else (point_node, offset)
            for point_node, offset in self._selection
        )

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    def checkpoint(self) -> Any:
        return copy.deepcopy((self._nodes, self._next_id, self._selection))

    def restore(self, snapshot: Any) -> None:
        self._nodes, self._next_id, self._selection = copy.deepcopy(snapshot)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _new_node(self, kind: NodeKind, parent: int | None = None, **fields: Any) -> Node:
        node = Node(id=self._next_id, kind=kind, parent=parent, **fields)
        self._nodes[node.id] = node
        self._next_id += 1
        return node

    def _node_length(self, node_id: int) -> int:
        node = self._nodes[node_id]
        if node.kind == "text":
            return len(node.text)
        return sum(self._node_length(cid) for cid in node.children)

    def _inline_text(self, paragraph_id: int) -> str:
        parts = []
        for child_id in self._nodes[paragraph_id].children:
            child = self._nodes[child_id]
            if child.kind == "text":
                parts.append(child.text)
            else:
                parts.extend(self._nodes[cid].text for cid in child.children)
        return "".join(parts)

    def _paragraph_spans(self) -> list[tuple[int, int, int]]:
        spans = []
        offset = 0
        for paragraph_id in self.paragraphs():
            length = self._node_length(paragraph_id)
            spans.append((paragraph_id, offset, offset + length))
            offset += length + 1
        return spans

    @staticmethod
    def _paragraph_index_at(offset: int, spans: list[tuple[int, int, int]]) -> int:
        for index, (_, start, end) in enumerate(spans):
            if start <= offset <= end:
                return index
        raise ValueError(f"Offset {offset} outside document")

    def _local_range(self, paragraph_id: int, child_id: int) -> tuple[int, int]:
        cursor = 0
        for cid in self._nodes[paragraph_id].children:
            length = self._node_length(cid)
            if cid == child_id:
                return cursor, cursor + length
            cursor += length
        raise KeyError(f"Node {child_id} is not a child of paragraph {paragraph_id}")

    def _child_index_at(self, paragraph_id: int, local: int) -> int:
        cursor = 0
        children = self._nodes[paragraph_id].children
        for index, child_id in enumerate(children):
            if cursor >= local:
                return index
            cursor += self._node_length(child_id)
        return len(children)

    def _remove_node(self, node_id: int) -> None:
        node = self._nodes.pop(node_id)
        for child_id in list(node.children):
            if child_id in self._nodes:
                self._remove_node(child_id)

        parent = self._nodes.get(node.parent) if node.parent is not None else None
        if parent is None:
            return
        parent.children.remove(node_id)
        if parent.kind == "mark" and not parent.children:
            self._remove_node(parent.id)

    def _merge_adjacent(self, parent_id: int) -> None:
        """Merge neighbouring text children (recursing into marks)."""
        parent = self._nodes[parent_id]
        merged: list[int] = []
        for child_id in parent.children:
            child = self._nodes[child_id]
            if child.kind == "mark":
                self._merge_adjacent(child_id)

            previous = self._nodes[merged[-1]] if merged else None
            if child.kind == "text" and previous is not None and previous.kind == "text":
                shift = len(previous.text)
                previous.text += child.text
                self._move_points(child_id, lambda o, pid=previous.id, s=shift: (pid, o + s))
                del self._nodes[child_id]
                continue
            merged.append(child_id)
        parent.children = merged
