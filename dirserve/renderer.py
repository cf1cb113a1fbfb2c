from typing import List, Optional
from urllib.parse import urlencode

from flask import render_template
from markupsafe import Markup, escape

from . import __version__
from .config import APP_NAME, ServerConfig
from .listing import Entry, SortingMethod, SortingOrder, human_filesize, sort_query


def format_message(message: str) -> Markup:
    """Escape a multi-line error message and keep its line breaks."""

    return Markup("<br>").join(escape(line) for line in message.splitlines())


def _return_link(return_path: str, sort: Optional[SortingMethod], order: Optional[SortingOrder]) -> str:
    params = sort_query(sort, order)
    if not params:
        return return_path
    separator = "&" if "?" in return_path else "?"
    return f"{return_path}{separator}{urlencode(list(params.items(multi=True)))}"


def render_error(
    message: str,
    status: int,
    return_path: str,
    sort: Optional[SortingMethod] = None,
    order: Optional[SortingOrder] = None,
    color_scheme: str = "squirrel",
    color_scheme_dark: str = "archlinux",
    has_referer: bool = True,
    hide_version_footer: bool = False,
) -> bytes:
    html = render_template(
        "error.html",
        app_name=APP_NAME,
        version=__version__,
        status=status,
        message=format_message(message),
        return_link=_return_link(return_path, sort, order) if has_referer else None,
        color_scheme=color_scheme,
        color_scheme_dark=color_scheme_dark,
        hide_version_footer=hide_version_footer,
    )
    return html.encode("utf-8")


def render_listing(
    config: ServerConfig,
    current_path: str,
    entries: List[Entry],
    sort: Optional[SortingMethod] = None,
    order: Optional[SortingOrder] = None,
    parent_href: Optional[str] = None,
) -> bytes:
    params = sort_query(sort, order)
    html = render_template(
        "listing.html",
        app_name=APP_NAME,
        version=__version__,
        title=config.title or f"Index of {current_path}",
        current_path=current_path,
        parent_href=parent_href,
        entries=entries,
        sort=sort.value if sort else "name",
        order=order.value if order else "asc",
        sort_suffix=("?" + urlencode(list(params.items(multi=True)))) if params else "",
        upload_enabled=config.file_upload,
        mkdir_enabled=config.mkdir_enabled,
        color_scheme=config.default_color_scheme,
        color_scheme_dark=config.default_color_scheme_dark,
        hide_version_footer=config.hide_version_footer,
        human_filesize=human_filesize,
    )
    return html.encode("utf-8")
