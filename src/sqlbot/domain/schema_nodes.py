from pydantic import BaseModel, Field
from typing import List, Optional


class ColumnSchema(BaseModel):
    """Represents one column of a target database table."""

    column_name: str = Field(..., description="Name of the column")
    data_type: str = Field(..., description="Declared data type of the column")
    is_nullable: bool = Field(default=True, description="Indicates if the column can contain null values")
    description: Optional[str] = Field(default=None, description="Column comment from the database")


class TableSchema(BaseModel):
    """Represents a target database table with its columns and primary key."""

    table_name: str = Field(..., description="Name of the table")
    schema_name: Optional[str] = Field(default=None, description="Schema (PostgreSQL) or database (MySQL) of the table")
    description: Optional[str] = Field(default=None, description="Table comment from the database")
    columns: List[ColumnSchema] = Field(default_factory=list, description="Columns in ordinal order")
    primary_keys: List[str] = Field(default_factory=list, description="Primary key column names")

    @property
    def full_name(self) -> str:
        if self.schema_name:
            return f"{self.schema_name}.{self.table_name}"
        return self.table_name

    def to_document_text(self) -> str:
        """
        Render the table as the text that gets embedded for retrieval.

        Example:
            Table: public.orders
            Table comment: Customer orders
            Columns:
              - id (integer, NOT NULL): Order id
              - amount (numeric, NULL)
            Primary keys: id
        """
        lines = [f"Table: {self.full_name}"]
        if self.description:
            lines.append(f"Table comment: {self.description}")
        lines.append("Columns:")
        for column in self.columns:
            nullability = "NULL" if column.is_nullable else "NOT NULL"
            line = f"  - {column.column_name} ({column.data_type}, {nullability})"
            if column.description:
                line += f": {column.description}"
            lines.append(line)
        if self.primary_keys:
            lines.append(f"Primary keys: {', '.join(self.primary_keys)}")
        return "\n".join(lines)
