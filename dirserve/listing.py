import enum
import os
import stat
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Mapping, Optional
from urllib.parse import quote

from werkzeug.datastructures import MultiDict


class SortingMethod(enum.Enum):
    NAME = "name"
    SIZE = "size"
    DATE = "date"


class SortingOrder(enum.Enum):
    ASC = "asc"
    DESC = "desc"


@dataclass(frozen=True)
class QueryParameters:
    path: Optional[str] = None
    sort: Optional[SortingMethod] = None
    order: Optional[SortingOrder] = None


@dataclass(frozen=True)
class Entry:
    name: str
    is_dir: bool
    is_symlink: bool
    size: Optional[int]
    modified: Optional[float]
    href: str

    @property
    def modified_display(self) -> str:
        if self.modified is None:
            return ""
        return datetime.fromtimestamp(self.modified, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")


def _enum_value(enum_cls, value: Optional[str]):
    if value is None:
        return None
    try:
        return enum_cls(value.strip().lower())
    except ValueError:
        return None


def extract_query_parameters(args: Mapping[str, str]) -> QueryParameters:
    """Read ``path``, ``sort`` and ``order`` from the query string.

    ``args`` is already percent-decoded by the HTTP layer. Unknown sort or
    order values are ignored rather than rejected.
    """

    return QueryParameters(
        path=args.get("path"),
        sort=_enum_value(SortingMethod, args.get("sort")),
        order=_enum_value(SortingOrder, args.get("order")),
    )


def sort_query(sort: Optional[SortingMethod], order: Optional[SortingOrder]) -> MultiDict:
    params = MultiDict()
    if sort is not None:
        params["sort"] = sort.value
    if order is not None:
        params["order"] = order.value
    return params


def human_filesize(num: int) -> str:
    value = float(num)
    for unit in ["B", "KB", "MB", "GB", "TB"]:
        if value < 1024 or unit == "TB":
            if unit == "B":
                return f"{int(value)} {unit}"
            return f"{value:.1f} {unit}"
        value /= 1024
    return f"{value:.1f} TB"


def list_directory(
    directory: Path,
    root: Path,
    show_hidden: bool = False,
    no_symlinks: bool = False,
    sort: Optional[SortingMethod] = None,
    order: Optional[SortingOrder] = None,
) -> List[Entry]:
    entries: List[Entry] = []
    relative_dir = directory.relative_to(root).as_posix()
    prefix = "" if relative_dir == "." else relative_dir + "/"
    with os.scandir(directory) as iterator:
        for item in iterator:
            if not show_hidden and item.name.startswith("."):
                continue
            is_symlink = item.is_symlink()
            if no_symlinks and is_symlink:
                continue
            try:
                info = item.stat()
            except OSError:
                # Dangling symlink; still listed so it can be seen.
                info = None
            is_dir = info is not None and stat.S_ISDIR(info.st_mode)
            href = "/" + quote(prefix + item.name) + ("/" if is_dir else "")
            entries.append(
                Entry(
                    name=item.name,
                    is_dir=is_dir,
                    is_symlink=is_symlink,
                    size=None if info is None or is_dir else info.st_size,
                    modified=None if info is None else info.st_mtime,
                    href=href,
                )
            )

    sort = sort or SortingMethod.NAME
    if sort is SortingMethod.SIZE:
        entries.sort(key=lambda entry: (entry.size or 0, entry.name.lower()))
    elif sort is SortingMethod.DATE:
        entries.sort(key=lambda entry: (entry.modified or 0.0, entry.name.lower()))
    else:
        entries.sort(key=lambda entry: entry.name.lower())
    if order is SortingOrder.DESC:
        entries.reverse()
    # Directories always come first.
    entries.sort(key=lambda entry: not entry.is_dir)
    return entries
