"""
Warm plans: what to pre-populate for a cache category.
"""

import functools
from dataclasses import dataclass
from typing import TYPE_CHECKING, Awaitable, Callable, List, Tuple

from starlette.responses import Response

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from ..adapters.menu_provider import MenuProvider


@dataclass(frozen=True)
class WarmTarget:
    """One request to pre-populate: the GET a client would issue, and how to answer it."""

    path: str
    fetch: Callable[[], Awaitable[Response]]
    query_params: Tuple[Tuple[str, str], ...] = ()


WarmSource = Callable[[], Awaitable[List[WarmTarget]]]

MENU_CATEGORY_PATH = "/api/menu/category/{category_id}"


def menu_warm_source(
    menu_provider: "MenuProvider",
    render_category: Callable[[str], Awaitable[Response]],
    path_template: str = MENU_CATEGORY_PATH,
) -> WarmSource:
    """One target per menu category, answered by ``render_category``."""

    async def plan() -> List[WarmTarget]:
        category_ids = await menu_provider.list_categories()
        return [
            WarmTarget(
                path=path_template.format(category_id=category_id),
                fetch=functools.partial(render_category, category_id),
            )
            for category_id in category_ids
        ]

    return plan
