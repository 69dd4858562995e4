import asyncio
from pathlib import Path
from typing import Protocol, Union, runtime_checkable


@runtime_checkable
class ArtifactSink(Protocol):
    """Durable, write-once byte storage addressed by a caller-chosen name."""

    async def write(self, name: str, data: bytes) -> str:
        """Store ``data`` under ``name`` and return its local path."""
        ...


class DirectorySink:
    """Writes artifacts as files in one directory. Existing files are never overwritten."""

    def __init__(self, directory: Union[str, Path]):
        self.directory = Path(directory)

    def _write(self, name: str, data: bytes) -> str:
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self.directory / name
        with open(path, "xb") as f:
            f.write(data)
        return str(path.resolve())

    async def write(self, name: str, data: bytes) -> str:
        return await asyncio.to_thread(self._write, name, data)
