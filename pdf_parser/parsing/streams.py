from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Any, AsyncIterable, AsyncIterator, Iterable, Iterator, List, Optional, Union

from .errors import ParseError

if TYPE_CHECKING:
    from .parser import PDFParser

PARSER_STREAM_BUFFER_SIZE = 64 * 1024


class ContentStream:
    """
    Lazy, finite, single-pass sequence over already produced content.

    In object mode (the default) the content is yielded as one item. Text
    content can be split into ``chunk_size`` pieces instead. A consumed
    stream stays empty; build a new one to iterate again.
    """

    def __init__(self, content: Any, chunk_size: Optional[int] = None):
        self._content = content
        self.chunk_size = chunk_size
        self._consumed = False

    def __iter__(self) -> Iterator[Any]:
        if self._consumed:
            return
        self._consumed = True
        content = self._content
        self._content = None
        if content is None:
            return
        if self.chunk_size and isinstance(content, (str, bytes)):
            for start in range(0, len(content), self.chunk_size):
                yield content[start:start + self.chunk_size]
            return
        yield content

    def read_all(self) -> List[Any]:
        return list(self)


class ParserStream:
    """
    Transform-style adapter: PDF bytes in, ``formImage`` payload out.

    Chunks are buffered until ``end()``, which hands the concatenated bytes to
    the bound parser's ``parse_buffer`` and waits for the outcome.
    """

    def __init__(self, parser: "PDFParser", buffer_size: int = PARSER_STREAM_BUFFER_SIZE):
        self.parser = parser
        self.buffer_size = buffer_size
        self._chunks: List[bytes] = []
        self._ended = False

    @staticmethod
    def create_content_stream(content: Any, chunk_size: Optional[int] = None) -> ContentStream:
        return ContentStream(content, chunk_size=chunk_size)

    def write(self, chunk: bytes) -> None:
        if self._ended:
            raise ValueError("write after end")
        self._chunks.append(bytes(chunk))

    @property
    def buffered(self) -> int:
        return sum(len(c) for c in self._chunks)

    async def end(self):
        self._ended = True
        buffer = b"".join(self._chunks)
        self._chunks = []
        outcome = await self.parser.parse_buffer(buffer)
        if not outcome.ok:
            detail = outcome.parser_error
            if isinstance(detail, BaseException):
                raise ParseError(str(detail), detail=detail) from detail
            raise ParseError(str(detail), detail=detail)
        return outcome.form_image

    async def transform(self, source: Union[Iterable[bytes], AsyncIterable[bytes]]) -> AsyncIterator[Any]:
        if hasattr(source, "__aiter__"):
            async for chunk in source:
                self.write(chunk)
        else:
            for chunk in source:
                self.write(chunk)
        yield await self.end()

    async def read_file(self, path: Union[str, Path]):
        with Path(path).open("rb") as f:
            for chunk in iter(lambda: f.read(self.buffer_size), b""):
                self.write(chunk)
        return await self.end()
