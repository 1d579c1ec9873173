# tablecraft/compiler/formatter.py
import html
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, Optional, Sequence, Union

from tablecraft.compiler import formula as formula_engine
from tablecraft.compiler.columns import ResolvedColumns
from tablecraft.core.exceptions import FormatError, ResourceMissingError
from tablecraft.models.descriptor import FormatRule, FormulaSpec, RowView, humanize

logger = logging.getLogger(__name__)

IMAGE_EXTENSIONS = ("jpg", "jpeg", "png", "gif")

REQUEST_STATUS_LABELS = ["Pending", "Accept", "Blocked", "Ban"]


def looks_like_image(value: Any) -> bool:
    if not isinstance(value, str) or "." not in value:
        return False
    return value.rsplit(".", 1)[-1].lower() in IMAGE_EXTENSIONS


def last_segment(value: str) -> str:
    return value.rstrip("/").split("/")[-1]


def format_number(value: Any, decimals: int = 0, separator: str = ".", format_type: Optional[str] = "number") -> Optional[str]:
    """
    Group digits for display. separator "." means "." thousands and "," decimal
    point, anything else the reverse. Empty input gives None.
    """
    if value is None or value == "":
        return None
    number = formula_engine.to_number(value)

    thousands, point = (".", ",") if separator == "." else (",", ".")
    places = decimals if (format_type == "decimal" or decimals > 0) else 0
    text = f"{number:,.{places}f}"
    # swap through a placeholder so the two marks don't collide
    return text.replace(",", "\0").replace(".", point).replace("\0", thousands)


def render_status(field: str, value: Any) -> Any:
    """Label for the well-known status columns; other values pass through"""
    if value is None or value == "":
        return value
    try:
        code = int(value)
    except (TypeError, ValueError):
        return value

    if field in ("active", "update_status"):
        return "Yes" if code == 1 else "No"
    if field == "flag_status":
        if code == 0:
            return "Super Admin <sup>( root )</sup>"
        if code == 1:
            return "Administrator"
        return "End User <sup>( all )</sup>"
    if field == "request_status":
        if 0 <= code < len(REQUEST_STATUS_LABELS):
            return REQUEST_STATUS_LABELS[code]
    return value


STATUS_FIELDS = ("active", "flag_status", "update_status", "request_status")


class ImageRenderer:
    """Renders image cells, preferring thumbnails that exist under asset_root"""

    def __init__(self, asset_root: Optional[Union[str, Path]] = None):
        self.asset_root = Path(asset_root) if asset_root else None

    def to_path(self, web_path: str) -> Path:
        if self.asset_root is None:
            return Path(web_path)
        return self.asset_root / web_path.lstrip("/")

    def exists(self, web_path: str) -> bool:
        try:
            return self.to_path(web_path).is_file()
        except OSError:
            return False

    def ensure_exists(self, web_path: str) -> None:
        if not self.exists(web_path):
            raise ResourceMissingError(web_path)

    def thumbnail_for(self, value: str, thumb: Any = None) -> str:
        """Existing {field}_thumb, else <dir>/thumb/tnail_<file>, else the original"""
        if isinstance(thumb, str) and thumb:
            return thumb if self.exists(thumb) else value

        directory, _, filename = value.rpartition("/")
        conventional = f"{directory}/thumb/tnail_{filename}"
        if self.exists(conventional):
            return conventional
        return value

    def render(self, field: str, value: Any, row: Mapping[str, Any]) -> Any:
        if value is None or value == "":
            return ""
        value = str(value)

        if not looks_like_image(value):
            return last_segment(value)

        src = self.thumbnail_for(value, row.get(f"{field}_thumb"))
        try:
            self.ensure_exists(value)
        except ResourceMissingError:
            filename = html.escape(last_segment(value))
            info = f"This File [ {filename} ] Do Not or Never Exist!"
            return (
                f'<div class="show-hidden-on-hover missing-file" title="{info}">'
                f'<i class="fa fa-warning"></i>&nbsp;{filename}</div>'
            )

        alt = f"imgsrc::{humanize(field.replace('-', '_'))}"
        return f'<center><img class="cdy-img-thumb" src="{html.escape(src)}" alt="{html.escape(alt)}" /></center>'


class RowFormatter:
    """Turns one raw row into a RowView in resolved column order"""

    def __init__(self, asset_root: Optional[Union[str, Path]] = None, image_fields: Iterable[str] = ()):
        self.images = ImageRenderer(asset_root)
        self.image_fields = set(image_fields)
        self._failures = 0
        self._rows = 0

    def is_image_column(self, field: str, row: Mapping[str, Any]) -> bool:
        if field in self.image_fields:
            return True
        if row.get(f"{field}_thumb") not in (None, ""):
            return True
        return looks_like_image(row.get(field))

    def apply_rules(self, field: str, value: Any, rules: Dict[str, FormatRule]) -> Any:
        rule = rules.get(field)
        if rule is None or value is None or value == "":
            return value
        try:
            return format_number(value, rule.decimals, rule.separator, rule.format_type)
        except (FormatError, ValueError) as e:
            self._failures += 1
            logger.debug(f"Format rule on '{field}' failed: {str(e)}")
            return ""

    def format(
            self,
            row: Mapping[str, Any],
            resolved_columns: ResolvedColumns,
            formula_specs: Sequence[FormulaSpec] = (),
            format_rules: Sequence[FormatRule] = ()
    ) -> RowView:
        self._rows += 1
        rules = {rule.field: rule for rule in format_rules}
        formulas = {spec.name: spec for spec in formula_specs}

        values: Dict[str, Any] = {}
        for field in resolved_columns.ordered:
            if field in formulas:
                value = formula_engine.evaluate(formulas[field], row)
                if value == "":
                    self._failures += 1
                values[field] = self.apply_rules(field, value, rules)
                continue

            value = row.get(field)
            if field in STATUS_FIELDS:
                values[field] = render_status(field, value)
            elif self.is_image_column(field, row):
                values[field] = self.images.render(field, value, row)
            else:
                values[field] = self.apply_rules(field, value, rules)

        return RowView(values=values)

    def diagnostics(self) -> Dict[str, Any]:
        return {"rows": self._rows, "soft_failures": self._failures}
