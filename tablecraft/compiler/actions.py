# tablecraft/compiler/actions.py
import html
import logging
import re
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Union
from urllib.parse import urlparse

from pydantic import BaseModel

from tablecraft.models.descriptor import DEFAULT_VERBS

logger = logging.getLogger(__name__)

VERB_SYNONYMS = {
    "view": "view", "index": "view", "show": "view", "read": "view",
    "insert": "insert", "create": "insert", "add": "insert", "store": "insert",
    "edit": "edit", "update": "edit", "modify": "edit",
    "delete": "delete", "destroy": "delete",
}

DEFAULT_STYLES = {
    "view": ("success", "eye"),
    "insert": ("primary", "plus"),
    "edit": ("primary", "pencil"),
    "delete": ("danger", "times"),
}

TITLES = {"view": "View detail", "edit": "Edit", "delete": "Delete"}

# insert is a table-level action, never rendered per row
ROW_VERBS = ("view", "edit", "delete")

_STRIP_SEGMENT = re.compile(r"/(index|create|edit|show)/?$")


def canonical_verb(name: str) -> Optional[str]:
    """Map a caller-facing verb synonym to view/insert/edit/delete, or None"""
    if not isinstance(name, str):
        return None
    return VERB_SYNONYMS.get(name.strip().lower())


class ActionButton(BaseModel):
    name: str
    color: str = "default"
    icon: str = "link"
    custom: bool = False


class RouteInfo(BaseModel):
    """Routing facts of the current request, supplied by the HTTP layer"""
    referrer: Optional[str] = None
    route_uri: Optional[str] = None
    route_name: Optional[str] = None
    request_path: Optional[str] = None


def parse_button_spec(spec: Union[bool, str]) -> List[ActionButton]:
    """
    Parse one custom button spec.

    `True` expands to the default view/edit/delete trio; "name|color|icon"
    gives a styled button; a bare name becomes "name|default|link".
    """
    if isinstance(spec, bool):
        if not spec:
            return []
        return [
            ActionButton(name="view", color="success", icon="eye"),
            ActionButton(name="edit", color="primary", icon="pencil"),
            ActionButton(name="delete", color="danger", icon="times"),
        ]

    if not isinstance(spec, str) or not spec.strip():
        return []

    parts = [part.strip() for part in spec.split("|")]
    if len(parts) == 1:
        parts = [parts[0], "default", "link"]
    name = parts[0]
    color = parts[1] if len(parts) > 1 and parts[1] else "default"
    icon = parts[2] if len(parts) > 2 and parts[2] else "link"
    if not name:
        return []

    verb = canonical_verb(name)
    if verb is not None:
        return [ActionButton(name=verb, color=color, icon=icon)]
    return [ActionButton(name=name, color=color, icon=icon, custom=True)]


def _route_suffix(route_name: str) -> str:
    return route_name.rsplit(".", 1)[-1]


def _route_base(route_name: str) -> str:
    return route_name.rsplit(".", 1)[0] if "." in route_name else route_name


def strip_action_segment(path: Optional[str]) -> Optional[str]:
    """Drop a trailing index/create/edit/show segment and the trailing slash"""
    if not path:
        return None
    path = _STRIP_SEGMENT.sub("", path.strip())
    path = path.rstrip("/")
    return path or None


def resolve_base_path(route: Optional[RouteInfo]) -> str:
    """
    Base path for row hrefs. First usable source wins: referrer path,
    matched route URI, route name minus its last segment, raw request path.
    """
    if route is None:
        return ""

    if route.referrer:
        base = strip_action_segment(urlparse(route.referrer).path)
        if base:
            return base

    if route.route_uri:
        base = strip_action_segment("/" + route.route_uri.lstrip("/"))
        if base:
            return base

    if route.route_name and "." in route.route_name:
        return "/" + _route_base(route.route_name).replace(".", "/")

    if route.request_path:
        base = strip_action_segment("/" + route.request_path.lstrip("/"))
        if base:
            return base

    return ""


class ActionResolver:
    """Composes and renders the per-row action buttons"""

    def __init__(self):
        self._last: Dict[str, Any] = {}

    def resolve(
            self,
            privilege_roles: Optional[Sequence[str]] = None,
            base_verbs: Optional[Iterable[str]] = None,
            removed_verbs: Iterable[str] = (),
            custom_button_specs: Iterable[Union[bool, str]] = (),
            route_name: Optional[str] = None,
            role_group: Optional[int] = None
    ) -> List[ActionButton]:
        verbs: List[str] = []
        for verb in (DEFAULT_VERBS if base_verbs is None else base_verbs):
            canonical = canonical_verb(verb)
            if canonical and canonical not in verbs:
                verbs.append(canonical)

        styles: Dict[str, ActionButton] = {}
        customs: Dict[str, ActionButton] = {}
        for spec in custom_button_specs:
            for button in parse_button_spec(spec):
                if button.custom:
                    customs.setdefault(button.name, button)
                else:
                    styles[button.name] = button
                    if button.name not in verbs:
                        verbs.append(button.name)

        applies = bool(privilege_roles) and (role_group is None or role_group > 1)
        if applies and route_name and route_name in privilege_roles:
            base = _route_base(route_name)
            granted = set()
            for role in privilege_roles:
                if _route_base(role) != base:
                    continue
                suffix = _route_suffix(role)
                verb = canonical_verb(suffix)
                if verb is not None:
                    granted.add(verb)
                elif suffix not in customs:
                    customs[suffix] = ActionButton(name=suffix, custom=True)
            verbs = [verb for verb in verbs if verb in granted]

        removed = set()
        for name in removed_verbs:
            removed.add(canonical_verb(name) or name)
        verbs = [verb for verb in verbs if verb not in removed]

        order = {verb: idx for idx, verb in enumerate(DEFAULT_VERBS)}
        verbs.sort(key=lambda verb: order.get(verb, len(order)))

        buttons = []
        for verb in verbs:
            if verb in styles:
                buttons.append(styles[verb])
            else:
                color, icon = DEFAULT_STYLES[verb]
                buttons.append(ActionButton(name=verb, color=color, icon=icon))
        buttons.extend(customs.values())

        self._last = {
            "verbs": verbs,
            "custom": list(customs),
            "privileges_applied": applies,
        }
        return buttons

    def render(
            self,
            buttons: Sequence[ActionButton],
            row: Mapping[str, Any],
            base_path: str,
            url_target_field: str = "id",
            soft_delete_field: Optional[str] = "deleted_at"
    ) -> str:
        """Action cell HTML for one row"""
        row_id = row.get(url_target_field)
        if row_id is None:
            row_id = row.get("id", "")
        prefix = f"{base_path.rstrip('/')}/{row_id}"
        restore = bool(soft_delete_field) and row.get(soft_delete_field) not in (None, "")

        parts = []
        for button in buttons:
            if not button.custom and button.name not in ROW_VERBS:
                continue
            parts.append(self._render_button(button, prefix, restore))

        return (
            '<div class="action-buttons-box">'
            '<div class="hidden-sm hidden-xs action-buttons">'
            + "".join(parts) +
            '</div></div>'
        )

    def _render_button(self, button: ActionButton, prefix: str, restore: bool) -> str:
        if button.custom:
            title = html.escape(button.name.lower())
            css = f"btn btn-{button.name} btn-{button.color} btn-xs"
            href = f"{prefix}/{button.name}"
        elif button.name == "delete":
            title = "Restore" if restore else TITLES["delete"]
            color, icon = ("warning", "recycle") if restore else (button.color, button.icon)
            action = "restore_deleted" if restore else "delete"
            css = f"btn btn-{color} btn-xs btn_delete"
            return (
                f'<a href="{html.escape(prefix)}/{action}" class="{html.escape(css)}" data-toggle="tooltip" '
                f'data-placement="top" data-original-title="{title}">'
                f'<i class="fa fa-{html.escape(icon)}"></i></a>'
            )
        else:
            title = TITLES[button.name]
            css = f"btn btn-{button.color} btn-xs btn_{button.name}"
            href = f"{prefix}/{button.name}"

        icon = html.escape(button.icon)
        if restore:
            # soft-deleted rows only offer restore
            disabled_css = "btn btn-default btn-xs" if button.custom else f"btn btn-default btn-xs btn_{button.name}"
            return (
                f'<a class="{html.escape(disabled_css)}" disabled readonly data-toggle="tooltip" '
                f'data-placement="top" data-original-title="{title}"><i class="fa fa-{icon}"></i></a>'
            )
        return (
            f'<a href="{html.escape(href)}" class="{html.escape(css)}" data-toggle="tooltip" '
            f'data-placement="top" data-original-title="{title}"><i class="fa fa-{icon}"></i></a>'
        )

    def diagnostics(self) -> Dict[str, Any]:
        return dict(self._last)
