# tablecraft/services/schema.py
import logging
from typing import Any, Dict, List, Optional, Union

from sqlalchemy import String, Text, inspect
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import NoSuchTableError, SQLAlchemyError

from tablecraft.core.exceptions import ConfigurationError, DataSourceUnavailableError
from tablecraft.models.descriptor import RelationSpec, humanize

logger = logging.getLogger(__name__)


def alias_for(local_column: str, display_column: str) -> str:
    """user_id + name -> user_name"""
    stem = local_column[:-3] if local_column.endswith("_id") else local_column
    return f"{stem}_{display_column}"


class SchemaIntrospector:
    """Reads columns and foreign keys through the SQLAlchemy inspector"""

    def __init__(self, bind: Union[Engine, Connection]):
        try:
            self.inspector = inspect(bind)
        except SQLAlchemyError as e:
            raise DataSourceUnavailableError(f"Cannot inspect database: {str(e)}") from e

    def table_names(self) -> List[str]:
        return self.inspector.get_table_names()

    def get_columns(self, table_name: str) -> List[Dict[str, Any]]:
        """Column details in the shape the API reports them"""
        try:
            columns = self.inspector.get_columns(table_name)
            primary = set(self.inspector.get_pk_constraint(table_name).get("constrained_columns") or [])
        except NoSuchTableError as e:
            raise ConfigurationError(f"Unknown table: {table_name}") from e

        return [
            {
                "name": col["name"],
                "type": str(col["type"]),
                "nullable": col.get("nullable", True),
                "default": col.get("default"),
                "primary_key": col["name"] in primary,
                "is_text": isinstance(col["type"], (String, Text)),
            }
            for col in columns
        ]

    def primary_key(self, table_name: str) -> Optional[str]:
        try:
            columns = self.inspector.get_pk_constraint(table_name).get("constrained_columns") or []
        except NoSuchTableError:
            return None
        return columns[0] if columns else None

    def default_display_column(self, table_name: str) -> Optional[str]:
        """First text column of a table that is not part of its primary key"""
        for column in self.get_columns(table_name):
            if column["is_text"] and not column["primary_key"]:
                return column["name"]
        return None

    def relation_catalog(self, table_name: str, display_columns: Optional[Dict[str, str]] = None) -> List[RelationSpec]:
        """
        One RelationSpec per single-column foreign key of table_name.
        display_columns picks the shown column per related table; otherwise
        the related table's first text column is used.
        """
        display_columns = display_columns or {}
        try:
            foreign_keys = self.inspector.get_foreign_keys(table_name)
        except NoSuchTableError as e:
            raise ConfigurationError(f"Unknown table: {table_name}") from e

        catalog = []
        for fk in foreign_keys:
            local = fk.get("constrained_columns") or []
            remote = fk.get("referred_columns") or []
            related = fk.get("referred_table")
            if len(local) != 1 or len(remote) != 1 or not related:
                logger.debug(f"Skipping composite or incomplete foreign key on {table_name}: {fk}")
                continue

            display = display_columns.get(related) or self.default_display_column(related)
            if not display:
                logger.info(f"No display column for related table {related}, relation skipped")
                continue

            alias = alias_for(local[0], display)
            catalog.append(RelationSpec(
                alias_field=alias,
                display_field=f"{related}.{display}",
                display_label=humanize(alias),
                foreign_key={f"{related}.{remote[0]}": f"{table_name}.{local[0]}"}
            ))

        logger.debug(f"Relation catalog for {table_name}: {[r.alias_field for r in catalog]}")
        return catalog
